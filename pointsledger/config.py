"""
Configuration management for the points ledger.
"""
import os
from dotenv import load_dotenv

from .utils.exceptions import ConfigurationError

load_dotenv()


class BaseConfig:
    """Base configuration."""
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Ledger policy
    POINTS_EXPIRY_DAYS = int(os.getenv('POINTS_EXPIRY_DAYS', '30'))
    DEFAULT_TENANT_TIMEZONE = os.getenv('DEFAULT_TENANT_TIMEZONE', 'UTC')

    # Ingestion
    INGEST_MAX_ERRORS = int(os.getenv('INGEST_MAX_ERRORS', '50'))
    LEDGER_WRITE_RETRIES = int(os.getenv('LEDGER_WRITE_RETRIES', '3'))

    # Expiry sweep runs once a day at this UTC hour
    POINTS_EXPIRY_HOUR = int(os.getenv('POINTS_EXPIRY_HOUR', '2'))


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///pointsledger_dev.db'
    )


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 5,
        'pool_recycle': 300,
        'pool_pre_ping': True,
    }


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    POINTS_EXPIRY_DAYS = 30
    INGEST_MAX_ERRORS = 50
    LEDGER_WRITE_RETRIES = 3


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config) -> None:
    """
    Validate ledger configuration before app startup.

    Args:
        config: The Flask config mapping (``app.config``)

    Raises:
        ConfigurationError: If a required value is missing or out of range
    """
    if not config.get('SQLALCHEMY_DATABASE_URI'):
        raise ConfigurationError(
            'DATABASE_URL is not set. Production deployments need a PostgreSQL URL.'
        )

    for key in ('POINTS_EXPIRY_DAYS', 'LEDGER_WRITE_RETRIES', 'INGEST_MAX_ERRORS'):
        value = config.get(key)
        if not isinstance(value, int) or value <= 0:
            raise ConfigurationError(f'{key} must be a positive integer, got {value!r}')

    hour = config.get('POINTS_EXPIRY_HOUR')
    if not isinstance(hour, int) or not 0 <= hour <= 23:
        raise ConfigurationError(f'POINTS_EXPIRY_HOUR must be between 0 and 23, got {hour!r}')
