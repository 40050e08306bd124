"""Device-side scheduler for the background verification sweep and notifier housekeeping.

The jobs run in the process that owns the coordinator, so their health is
reported from here as well (``scheduler_health``).
"""

import logging
from functools import partial
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from flockcare.client.coordinator import TaskCoordinator
from flockcare.core.config import settings
from flockcare.core.scheduler_tracker import job_tracker, retry_job_with_backoff


logger = logging.getLogger(__name__)

VERIFY_JOB_ID = "verify_pending"
PRUNE_JOB_ID = "prune_notifier"
JOB_IDS = (VERIFY_JOB_ID, PRUNE_JOB_ID)
PRUNE_INTERVAL_MINUTES = 15

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def verify_pending_overlays(coordinator: TaskCoordinator) -> None:
    """Re-read the ledger for every overlay entry still waiting on confirmation."""
    if not coordinator.overlay.pending():
        logger.debug("No pending overlay entries to verify")
        return

    report = await coordinator.verify_pending()
    if report.kept:
        logger.debug("%d overlay entries still awaiting the ledger", len(report.kept))


async def prune_notifier_registry(coordinator: TaskCoordinator) -> None:
    """Drop notifier registry entries no surface needs any more."""
    removed = coordinator.notifier.prune()
    if removed:
        logger.info("Pruned %d notifier registry entries", removed)


def start_scheduler(coordinator: TaskCoordinator, *, interval_seconds: int | None = None) -> None:
    """Register the background jobs for a coordinator and start the scheduler.

    Call once at app start, after the overlay has been loaded.
    """
    interval = interval_seconds if interval_seconds is not None else settings.verify_interval_seconds
    logger.info("Starting scheduler")

    scheduler.add_job(
        retry_job_with_backoff,
        args=[partial(verify_pending_overlays, coordinator), VERIFY_JOB_ID],
        trigger=IntervalTrigger(seconds=interval),
        id=VERIFY_JOB_ID,
        name="Verify Pending Completions",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info("Scheduled verification sweep: every %ds", interval)

    scheduler.add_job(
        retry_job_with_backoff,
        args=[partial(prune_notifier_registry, coordinator), PRUNE_JOB_ID],
        kwargs={"max_retries": 1},
        trigger=IntervalTrigger(minutes=PRUNE_INTERVAL_MINUTES),
        id=PRUNE_JOB_ID,
        name="Prune Notifier Registry",
        replace_existing=True,
    )
    logger.info("Scheduled notifier prune: every %d minutes", PRUNE_INTERVAL_MINUTES)

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler, waiting for a running sweep to finish."""
    if not scheduler.running:
        return
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")


async def scheduler_health() -> dict[str, Any]:
    """Tracked run status per job and the dead letter queue.

    Status is "healthy", "degraded" when any job is failing, or "critical"
    when a job has exhausted its retries.
    """
    job_statuses = {job_name: await job_tracker.get_job_status(job_name) for job_name in JOB_IDS}
    dlq = job_tracker.get_dead_letter_queue()

    has_failures = any(status["consecutive_failures"] > 0 for status in job_statuses.values())
    overall_status = "degraded" if has_failures else "healthy"
    if dlq:
        overall_status = "critical"

    return {
        "status": overall_status,
        "scheduler_running": scheduler.running,
        "jobs": job_statuses,
        "dead_letter_queue_size": len(dlq),
        "dead_letter_queue": dlq,
    }
