"""
Logging setup for the points ledger.

Configured once from ``create_app``. Level and format come from the
``LOG_LEVEL`` and ``LOG_FORMAT`` environment variables.
"""
import logging
import os

DEFAULT_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'

_configured = False


def setup_logging(level: str = None, fmt: str = None) -> None:
    """Configure the root logger. Safe to call more than once."""
    global _configured

    if _configured:
        return

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=fmt or os.getenv('LOG_FORMAT', DEFAULT_FORMAT),
    )

    # SQLAlchemy echoes every statement at INFO
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a module logger."""
    return logging.getLogger(name)
