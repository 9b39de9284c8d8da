"""
Scheduler service
APScheduler job for the periodic price reconciliation sweep
"""

from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from medcure.core.config import settings
from medcure.core.logging_config import get_logger
from medcure.db.session import SessionLocal
from medcure.services.events import dispatcher
from medcure.services.price_recalculator import refresh_all_prices

logger = get_logger(__name__)

# Process-wide scheduler
scheduler: Optional[AsyncIOScheduler] = None


async def reconcile_prices_job():
    """Run the reconciliation sweep against the application database"""
    try:
        await refresh_all_prices(SessionLocal, dispatcher)
    except Exception:
        logger.exception("Scheduled price reconciliation failed")


def init_scheduler():
    """Create and start the scheduler"""
    global scheduler

    if not settings.PRICE_RECONCILE_ENABLED:
        logger.info("Price reconciliation job disabled")
        return

    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        reconcile_prices_job,
        trigger=CronTrigger(
            hour=settings.PRICE_RECONCILE_HOUR,
            minute=settings.PRICE_RECONCILE_MINUTE
        ),
        id="price_reconcile",
        name="Displayed price reconciliation",
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Scheduler started - price reconciliation daily at {settings.PRICE_RECONCILE_HOUR:02d}:{settings.PRICE_RECONCILE_MINUTE:02d}")


def shutdown_scheduler():
    """Stop the scheduler"""
    global scheduler
    if scheduler:
        scheduler.shutdown()
        scheduler = None
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Scheduler status"""
    if not scheduler:
        return {
            "enabled": settings.PRICE_RECONCILE_ENABLED,
            "running": False,
            "jobs": []
        }

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None
        })

    return {
        "enabled": settings.PRICE_RECONCILE_ENABLED,
        "running": scheduler.running,
        "jobs": jobs
    }
