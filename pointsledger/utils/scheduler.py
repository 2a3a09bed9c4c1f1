"""
Background scheduler for automated ledger tasks.

Handles:
- Points expiry sweep (daily at POINTS_EXPIRY_HOUR UTC, 02:00 by default)
"""
import atexit
import os

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .logging_config import get_logger

logger = get_logger(__name__)

# Global scheduler instance
_scheduler = None
_flask_app = None  # Flask app reference for job context

POINTS_EXPIRY_JOB_ID = 'points_expiry'


def init_scheduler(app):
    """
    Initialize the background scheduler.

    Only runs in production or when ENABLE_SCHEDULER=true, and never in
    testing. Only one process per deployment should run the scheduler.

    Returns:
        The started BackgroundScheduler, or None when disabled
    """
    global _scheduler, _flask_app

    _flask_app = app

    if app.config.get('TESTING'):
        logger.info('[Scheduler] Disabled in testing mode')
        return None

    if not (os.getenv('FLASK_ENV') == 'production' or os.getenv('ENABLE_SCHEDULER') == 'true'):
        logger.info('[Scheduler] Disabled (set FLASK_ENV=production or ENABLE_SCHEDULER=true)')
        return None

    # Prevent multiple scheduler instances (one per gunicorn worker otherwise)
    if os.getenv('SCHEDULER_RUNNING') == 'true':
        logger.info('[Scheduler] Already running in another process')
        return None

    _scheduler = build_scheduler(app.config.get('POINTS_EXPIRY_HOUR', 2))
    _scheduler.start()
    os.environ['SCHEDULER_RUNNING'] = 'true'

    logger.info(
        f"[Scheduler] Started: points expiry daily at "
        f"{app.config.get('POINTS_EXPIRY_HOUR', 2):02d}:00 UTC"
    )

    atexit.register(shutdown_scheduler)
    return _scheduler


def build_scheduler(expiry_hour: int = 2) -> BackgroundScheduler:
    """Create the scheduler with its jobs registered (not started)."""
    scheduler = BackgroundScheduler(
        timezone='UTC',
        job_defaults={
            'coalesce': True,  # Combine missed runs
            'max_instances': 1,  # Prevent concurrent sweeps
            'misfire_grace_time': 3600
        }
    )

    scheduler.add_job(
        run_points_expiry,
        trigger=CronTrigger(hour=expiry_hour, minute=0),
        id=POINTS_EXPIRY_JOB_ID,
        name='Expire points batches past their expiry date',
        replace_existing=True
    )
    return scheduler


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info('[Scheduler] Shutdown complete')


def run_points_expiry():
    """
    Expire points batches for all tenants.
    Runs daily.
    """
    if not _flask_app:
        logger.error('[Scheduler] Flask app not initialized')
        return None

    logger.info('[Scheduler] Processing points expiry...')

    with _flask_app.app_context():
        from ..services.expiry_sweeper import expire_points

        result = expire_points()

        logger.info(
            f"[Scheduler] Points expiry complete: {result['expired_batches']} batches, "
            f"{result['points_expired']} points, {len(result['errors'])} errors"
        )
        return result
