"""In-process propagation of completion changes between mounted views.

Two paths:
- ``CompletionNotifier``: live listeners plus a registry of the latest change
  per instance, which views drain on activation to catch changes published
  while they were not mounted. ``consumed_by`` deduplicates per surface.
- ``ReturnChannel``: a one-shot result from a child view to the view that
  opened it.

One notifier is created at app start and injected; there is no module-level
instance.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Generic, TypeVar

from flockcare.core.config import Constants
from flockcare.domain.task import StatusChange


logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[StatusChange], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CompletionNotifier:
    """Publish/subscribe bus with a per-instance registry of the latest change."""

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        """Initialize an empty notifier."""
        self._listeners: list[Listener] = []
        self._registry: dict[str, StatusChange] = {}
        self._clock = clock

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a live listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, instance_id: str, completed: bool, source: str | None = None) -> StatusChange:
        """Record a change and deliver it synchronously to every live listener.

        The publishing surface is marked as having consumed its own change.
        A failing listener is logged and does not stop delivery to the rest.
        """
        change = StatusChange(
            instance_id=instance_id,
            completed=completed,
            timestamp=self._clock(),
            source=source,
            consumed_by={source} if source else set(),
        )
        self._registry[instance_id] = change

        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Completion listener failed for %s", instance_id)

        logger.debug("Published %s completed=%s from %s", instance_id, completed, source)
        return change

    def get(self, instance_id: str) -> StatusChange | None:
        return self._registry.get(instance_id)

    def unconsumed(self, surface_id: str) -> list[StatusChange]:
        """Registry entries this surface has not consumed yet, oldest first."""
        changes = [c for c in self._registry.values() if surface_id not in c.consumed_by]
        return sorted(changes, key=lambda c: c.timestamp)

    def mark_consumed(self, surface_id: str, instance_id: str) -> None:
        change = self._registry.get(instance_id)
        if change is not None:
            change.consumed_by.add(surface_id)

    def drain(self, surface_id: str) -> list[StatusChange]:
        """Return and mark consumed every change this surface has not seen."""
        changes = self.unconsumed(surface_id)
        for change in changes:
            change.consumed_by.add(surface_id)
        return changes

    def prune(self, max_age: timedelta | None = None) -> int:
        """Remove registry entries older than max_age; returns how many were removed."""
        age = max_age if max_age is not None else timedelta(seconds=Constants.NOTIFIER_REGISTRY_MAX_AGE_SECONDS)
        cutoff = self._clock() - age
        stale = [instance_id for instance_id, change in self._registry.items() if change.timestamp < cutoff]
        for instance_id in stale:
            del self._registry[instance_id]
        if stale:
            logger.debug("Pruned %d notifier registry entries", len(stale))
        return len(stale)


class ReturnChannel(Generic[T]):
    """One-shot child -> parent result. The first ``send`` wins; later sends are ignored.

    Usage:
        channel = ReturnChannel[list[StatusChange]]()
        channel.on_result(parent.apply_changes)
        ...
        channel.send(changes)          # in the child, on close
        await channel.receive()        # or await it in the parent
    """

    def __init__(self) -> None:
        """Initialize an unsent channel."""
        self._sent = False
        self._value: T | None = None
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[T], None]] = []

    @property
    def is_sent(self) -> bool:
        return self._sent

    def send(self, value: T) -> bool:
        """Deliver the result. Returns False if a result was already sent."""
        if self._sent:
            logger.debug("Ignoring second send on return channel")
            return False

        self._sent = True
        self._value = value
        self._event.set()
        for callback in self._callbacks:
            try:
                callback(value)
            except Exception:
                logger.exception("Return channel callback failed")
        return True

    def on_result(self, callback: Callable[[T], None]) -> None:
        """Run callback with the result; immediately if it was already sent."""
        if self._sent:
            callback(self._value)  # type: ignore[arg-type]
            return
        self._callbacks.append(callback)

    async def receive(self, timeout: float | None = None) -> T:
        """Wait for the result.

        Raises:
            TimeoutError: If nothing is sent within timeout seconds
        """
        wait = timeout if timeout is not None else Constants.RETURN_CHANNEL_TIMEOUT_SECONDS
        await asyncio.wait_for(self._event.wait(), timeout=wait)
        return self._value  # type: ignore[return-value]
