"""APScheduler integration for FastAPI.

Runs the snapshot cycle on a fixed interval inside the API process.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tao_dashboard.config import settings
from tao_dashboard.utils.constants import INTERVAL_HOURS, SNAPSHOT_JOB

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")


def _get_trigger(interval: str) -> IntervalTrigger:
    # Support arbitrary "<N>m" / "<N>h" intervals
    if interval.endswith("m") and interval[:-1].isdigit():
        return IntervalTrigger(minutes=int(interval[:-1]))
    if interval.endswith("h") and interval[:-1].isdigit() and interval not in INTERVAL_HOURS:
        return IntervalTrigger(hours=int(interval[:-1]))
    hours = INTERVAL_HOURS.get(interval, 24.0)
    if hours < 1:
        return IntervalTrigger(minutes=int(hours * 60))
    return IntervalTrigger(hours=hours)


async def _scheduled_snapshot():
    from tao_dashboard.engine.snapshot_job import run_snapshot_cycle

    result = await run_snapshot_cycle()
    if not result.ok:
        logger.error(f"Scheduled snapshot failed: {result.error}")


def add_snapshot_job(interval: str | None = None):
    """Add or replace the snapshot job."""
    interval = interval or settings.snapshot_interval
    scheduler.add_job(
        _scheduled_snapshot,
        trigger=_get_trigger(interval),
        id=SNAPSHOT_JOB,
        name="Wallet snapshot",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
    )
    logger.info(f"Scheduled snapshot every {interval}")


def start_scheduler():
    """Start the scheduler with the snapshot job."""
    add_snapshot_job()
    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def _next_run(job) -> str | None:
    # Pending jobs (scheduler not started) have no next_run_time yet
    next_run = getattr(job, "next_run_time", None)
    return str(next_run) if next_run else None


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": _next_run(j),
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }
