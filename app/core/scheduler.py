import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.memory import MemoryJobStore

from app.core.config import settings

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "token_sweep"

scheduler = BackgroundScheduler(
    jobstores={"default": MemoryJobStore()},
    job_defaults={"coalesce": True, "max_instances": 1},
)


def run_token_sweep():
    """Scheduled job: open a session, sweep expired records, close it."""
    from app.core.database import SessionLocal
    from app.services.token_sweeper import sweep_expired_records

    db = SessionLocal()
    try:
        sweep_expired_records(db)
    except Exception as e:
        db.rollback()
        logger.error(f"Token sweep failed: {e}")
    finally:
        db.close()


def start_scheduler():
    """Register the sweep job and start the scheduler."""
    scheduler.add_job(
        run_token_sweep,
        trigger="interval",
        minutes=settings.TOKEN_SWEEP_INTERVAL_MINUTES,
        id=SWEEP_JOB_ID,
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "APScheduler started (token sweep every %d minutes)",
        settings.TOKEN_SWEEP_INTERVAL_MINUTES,
    )


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler shut down")
