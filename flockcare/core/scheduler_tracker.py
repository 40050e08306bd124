"""Run tracking and retry for background jobs (verification sweep, registry prune)."""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from flockcare.core.config import Constants
from flockcare.core.redis_client import redis_client


logger = logging.getLogger(__name__)

STATUS_TTL_SECONDS = 86400 * 7
DEAD_LETTER_TTL_SECONDS = 86400 * 30
CONSECUTIVE_FAILURE_THRESHOLD = 3
MAX_ERROR_LENGTH = 500


class JobTracker:
    """Track job runs in Redis, or in memory when Redis is not configured."""

    def __init__(self) -> None:
        """Initialize job tracker."""
        self._memory_storage: dict[str, dict[str, Any]] = {}
        self._dead_letter_queue: deque[tuple[str, str, str]] = deque(
            maxlen=Constants.TRACKER_DEAD_LETTER_QUEUE_MAXLEN
        )

    @staticmethod
    def _key(job_name: str, field: str) -> str:
        return f"scheduler:job:{job_name}:{field}"

    def _memory(self, job_name: str) -> dict[str, Any]:
        return self._memory_storage.setdefault(job_name, {})

    async def record_job_start(self, job_name: str) -> None:
        now = datetime.now(UTC).isoformat()
        if redis_client.is_available:
            await redis_client.set(self._key(job_name, "current_run"), now, ttl_seconds=3600)
        else:
            self._memory(job_name)["current_run"] = now

    async def record_job_success(self, job_name: str) -> None:
        now = datetime.now(UTC).isoformat()

        if redis_client.is_available:
            await redis_client.set(self._key(job_name, "last_success"), now, ttl_seconds=STATUS_TTL_SECONDS)
            await redis_client.set(self._key(job_name, "consecutive_failures"), "0", ttl_seconds=STATUS_TTL_SECONDS)
            await redis_client.increment(self._key(job_name, "success_count"), ttl_seconds=STATUS_TTL_SECONDS)
            await redis_client.delete(self._key(job_name, "current_run"))
            return

        data = self._memory(job_name)
        data["last_success"] = now
        data["consecutive_failures"] = 0
        data["success_count"] = data.get("success_count", 0) + 1
        data.pop("current_run", None)

    async def record_job_failure(self, job_name: str, error: str) -> int | None:
        """Record a failed run.

        Returns:
            Consecutive failure count, or None if Redis could not count it
        """
        now = datetime.now(UTC).isoformat()
        error = error[:MAX_ERROR_LENGTH]

        if redis_client.is_available:
            await redis_client.set(self._key(job_name, "last_failure"), now, ttl_seconds=STATUS_TTL_SECONDS)
            await redis_client.set(self._key(job_name, "last_error"), error, ttl_seconds=STATUS_TTL_SECONDS)
            consecutive = await redis_client.increment(
                self._key(job_name, "consecutive_failures"), ttl_seconds=STATUS_TTL_SECONDS
            )
            await redis_client.increment(self._key(job_name, "failure_count"), ttl_seconds=STATUS_TTL_SECONDS)
            await redis_client.delete(self._key(job_name, "current_run"))
            return consecutive

        data = self._memory(job_name)
        data["last_failure"] = now
        data["last_error"] = error
        data["consecutive_failures"] = data.get("consecutive_failures", 0) + 1
        data["failure_count"] = data.get("failure_count", 0) + 1
        data.pop("current_run", None)
        return data["consecutive_failures"]

    async def get_job_status(self, job_name: str) -> dict[str, Any]:
        """Get the recorded run status of a job."""
        if redis_client.is_available:
            fields = (
                "last_success",
                "last_failure",
                "last_error",
                "consecutive_failures",
                "success_count",
                "failure_count",
                "current_run",
            )
            data: dict[str, Any] = {field: await redis_client.get(self._key(job_name, field)) for field in fields}
        else:
            data = self._memory_storage.get(job_name, {})

        return {
            "job_name": job_name,
            "last_success": data.get("last_success"),
            "last_failure": data.get("last_failure"),
            "last_error": data.get("last_error"),
            "consecutive_failures": int(data.get("consecutive_failures") or 0),
            "success_count": int(data.get("success_count") or 0),
            "failure_count": int(data.get("failure_count") or 0),
            "currently_running": data.get("current_run") is not None,
            "current_run_started": data.get("current_run"),
        }

    async def add_to_dead_letter_queue(self, job_name: str, error: str, context: str) -> None:
        """Park a persistently failing job for inspection."""
        timestamp = datetime.now(UTC).isoformat()
        self._dead_letter_queue.append((job_name, error, context))

        logger.error(
            "Job added to dead letter queue",
            extra={"job_name": job_name, "error": error, "context": context, "timestamp": timestamp},
        )

        if redis_client.is_available:
            await redis_client.set(
                f"scheduler:dlq:{job_name}:{timestamp}",
                f"{error} | {context}",
                ttl_seconds=DEAD_LETTER_TTL_SECONDS,
            )

    def get_dead_letter_queue(self) -> list[dict[str, str]]:
        return [
            {"job_name": job_name, "error": error, "context": context}
            for job_name, error, context in self._dead_letter_queue
        ]


job_tracker = JobTracker()


async def retry_job_with_backoff(
    job_func: Callable[[], Awaitable[Any]],
    job_name: str,
    max_retries: int = 3,
    base_delay: float = 2.0,
) -> bool:
    """Run a job, retrying with exponential backoff.

    Args:
        job_func: Async callable to execute
        job_name: Name of the job for tracking
        max_retries: Maximum number of attempts
        base_delay: Base delay in seconds for exponential backoff

    Returns:
        True if an attempt succeeded, False once all attempts failed
    """
    await job_tracker.record_job_start(job_name)

    last_error = None
    for attempt in range(max_retries):
        try:
            logger.debug("Executing %s (attempt %d/%d)", job_name, attempt + 1, max_retries)
            await job_func()
        except Exception as e:
            last_error = str(e)
            logger.error("%s failed on attempt %d/%d: %s", job_name, attempt + 1, max_retries, last_error)
            if attempt < max_retries - 1:
                delay = base_delay**attempt
                logger.info("Retrying %s in %.1fs", job_name, delay)
                await asyncio.sleep(delay)
        else:
            await job_tracker.record_job_success(job_name)
            return True

    error_msg = f"Failed after {max_retries} attempts: {last_error}"
    consecutive_failures = await job_tracker.record_job_failure(job_name, error_msg)
    logger.error(
        "%s failed after all retry attempts",
        job_name,
        extra={"error": error_msg, "consecutive_failures": consecutive_failures},
    )

    if consecutive_failures and consecutive_failures >= CONSECUTIVE_FAILURE_THRESHOLD:
        await job_tracker.add_to_dead_letter_queue(
            job_name=job_name,
            error=last_error or "Unknown error",
            context=f"Failed {consecutive_failures} consecutive times",
        )
    return False
