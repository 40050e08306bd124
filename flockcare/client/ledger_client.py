"""HTTP client for the remote task service.

Calls are never retried here: ``complete`` is idempotent on the server, so
retrying is left to the caller (the view coordinator's verification sweep).
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError

from flockcare.core.config import Constants, settings
from flockcare.core.errors import BatchNotFoundError, CallerError, StaleInstanceError, TransientLedgerError
from flockcare.core.logging import span
from flockcare.domain.batch import Batch
from flockcare.domain.task import CompletionResult, TaskInstance


logger = logging.getLogger(__name__)

T = TypeVar("T")

HTTP_CLIENT_ERROR_START = 400
HTTP_CLIENT_ERROR_END = 500

_INSTANCE_ID_ALIASES = ("instanceId", "instance_id", "_id", "taskId", "task_id", "id")


def normalize_task_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Collapse the identifier aliases a task record may carry into ``instanceId``.

    The first non-empty alias wins; the others are dropped so nothing
    downstream sees more than one identifier field.
    """
    normalized = {key: value for key, value in payload.items() if key not in _INSTANCE_ID_ALIASES}
    for alias in _INSTANCE_ID_ALIASES:
        value = payload.get(alias)
        if value not in (None, ""):
            normalized["instanceId"] = str(value)
            break
    return normalized


def _parse_instances(items: list[dict[str, Any]]) -> list[TaskInstance]:
    return [TaskInstance.model_validate(normalize_task_payload(item)) for item in items]


def _parse_grouped(grouped: dict[str, list[dict[str, Any]]]) -> dict[int, list[TaskInstance]]:
    return {int(day): _parse_instances(items) for day, items in sorted(grouped.items(), key=lambda kv: int(kv[0]))}


def _parse_batches(items: list[dict[str, Any]]) -> list[Batch]:
    return [Batch.model_validate(item) for item in items]


class LedgerClient:
    """Async client for the task service's ledger and batch routes."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the client over a caller-owned httpx.AsyncClient."""
        self._http = http_client
        self._base_url = (base_url if base_url is not None else settings.ledger_base_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.ledger_timeout_seconds

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = await self._http.request(method, url, json=payload, timeout=self._timeout)
        except httpx.TimeoutException as e:
            logger.warning("Task service timed out: %s %s", method, path)
            msg = f"Task service timed out: {path}"
            raise TransientLedgerError(msg) from e
        except httpx.TransportError as e:
            logger.warning("Task service unreachable: %s %s (%s)", method, path, e)
            msg = f"Task service unreachable: {e}"
            raise TransientLedgerError(msg) from e

        body = self._decode(response)

        if response.is_success:
            return body

        error = str(body.get("error") or response.text or response.reason_phrase)
        code = body.get("code")
        if response.status_code == Constants.HTTP_CONFLICT or code == StaleInstanceError.code:
            raise StaleInstanceError(error)
        if response.status_code == Constants.HTTP_NOT_FOUND or code == BatchNotFoundError.code:
            raise BatchNotFoundError(error)
        if HTTP_CLIENT_ERROR_START <= response.status_code < HTTP_CLIENT_ERROR_END:
            raise CallerError(error)

        logger.warning("Task service error %d on %s: %s", response.status_code, path, error)
        msg = f"Task service error {response.status_code}: {error}"
        raise TransientLedgerError(msg)

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _require(**ids: str | None) -> None:
        for name, value in ids.items():
            if not value or not str(value).strip():
                msg = f"{name} is required"
                raise CallerError(msg)

    @staticmethod
    def _parse(parse: Callable[[Any], T], data: Any) -> T:  # noqa: ANN401
        try:
            return parse(data)
        except (ValidationError, TypeError, AttributeError) as e:
            logger.error("Malformed task service response: %s", e)
            msg = "Malformed task service response"
            raise TransientLedgerError(msg) from e

    async def get_todos(self, batch_id: str, day_of_age: int) -> list[TaskInstance]:
        with span("ledger_client.get_todos"):
            self._require(batchId=batch_id)
            body = await self._request("POST", "/tasks/todos", {"batchId": batch_id, "dayOfAge": day_of_age})
            return self._parse(_parse_instances, body.get("data") or [])

    async def get_upcoming(self, batch_id: str, from_day: int, to_day: int) -> dict[int, list[TaskInstance]]:
        with span("ledger_client.get_upcoming"):
            self._require(batchId=batch_id)
            body = await self._request(
                "POST", "/tasks/upcoming", {"batchId": batch_id, "fromDay": from_day, "toDay": to_day}
            )
            data = body.get("data") or {}
            return self._parse(_parse_grouped, data)

    async def get_history(self, batch_id: str, limit: int | None = None) -> list[TaskInstance]:
        with span("ledger_client.get_history"):
            self._require(batchId=batch_id)
            payload: dict[str, Any] = {"batchId": batch_id}
            if limit is not None:
                payload["limit"] = limit
            body = await self._request("POST", "/tasks/history", payload)
            return self._parse(_parse_instances, body.get("data") or [])

    async def complete(
        self,
        batch_id: str,
        instance_id: str,
        completed_by: str | None = None,
        completed_at: datetime | None = None,
        notes: str = "",
    ) -> CompletionResult:
        """Complete an instance. ``already_completed`` is a success, not an error."""
        with span("ledger_client.complete"):
            self._require(batchId=batch_id, instanceId=instance_id)
            stamp = completed_at or datetime.now(UTC)
            body = await self._request(
                "POST",
                "/tasks/complete",
                {
                    "batchId": batch_id,
                    "instanceId": instance_id,
                    "completedAt": stamp.isoformat(),
                    "completedBy": completed_by or settings.default_operator_name,
                    "notes": notes,
                },
            )
            return self._parse(CompletionResult.model_validate, body)

    async def uncomplete(self, batch_id: str, instance_id: str) -> CompletionResult:
        with span("ledger_client.uncomplete"):
            self._require(batchId=batch_id, instanceId=instance_id)
            body = await self._request(
                "POST", "/tasks/uncomplete", {"batchId": batch_id, "instanceId": instance_id}
            )
            return self._parse(CompletionResult.model_validate, body)

    async def get_batch(self, batch_id: str) -> Batch:
        with span("ledger_client.get_batch"):
            self._require(batchId=batch_id)
            body = await self._request("GET", f"/batches/{batch_id}")
            return self._parse(Batch.model_validate, body.get("data"))

    async def list_active_batches(self) -> list[Batch]:
        with span("ledger_client.list_active_batches"):
            body = await self._request("GET", "/batches/active")
            return self._parse(_parse_batches, body.get("data") or [])
