"""
Background scheduler - runs periodic jobs inside the FastAPI process.

Jobs:
  - Overdue sweep (daily, Settings.OVERDUE_SWEEP_HOUR UTC): re-derives the
    status of unsettled payments whose due date has passed
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from famledger.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def _run_overdue_sweep():
    from famledger.infrastructure.db.session import get_session_factory
    from famledger.application.payments import refresh_overdue_statuses
    from famledger.application.ledger_locks import get_lock_table

    Session = get_session_factory()
    db = Session()
    try:
        changed = refresh_overdue_statuses(db, get_lock_table())
        logger.info("Overdue sweep finished: %d payment(s) changed status", changed)
    except Exception:
        logger.exception("Overdue sweep job failed")
    finally:
        db.close()


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    hour = get_settings().OVERDUE_SWEEP_HOUR
    if hour < 0:
        logger.info("Scheduler disabled (OVERDUE_SWEEP_HOUR < 0)")
        return

    scheduler.add_job(
        _run_overdue_sweep,
        CronTrigger(hour=hour, minute=0),
        id="overdue_sweep",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started: overdue_sweep (%02d:00 UTC)", hour)


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
