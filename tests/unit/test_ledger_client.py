"""Tests for the task service HTTP client."""

import json
from datetime import UTC, datetime

import httpx
import pytest
import respx

from flockcare.client.ledger_client import LedgerClient, normalize_task_payload
from flockcare.core.errors import BatchNotFoundError, CallerError, StaleInstanceError, TransientLedgerError


BASE_URL = "http://ledger.test"


def _task(instance_id: str = "b1:entry_check:1", **overrides) -> dict:
    task = {
        "instanceId": instance_id,
        "batchId": "b1",
        "dayOfAge": 1,
        "definitionId": "entry_check",
        "seriesId": "entry_check~1",
        "category": "inspection",
        "title": "Entry health check",
        "completed": False,
    }
    task.update(overrides)
    return task


@pytest.fixture
async def ledger():
    async with httpx.AsyncClient() as http:
        yield LedgerClient(http, base_url=BASE_URL, timeout=1.0)


@pytest.mark.unit
class TestNormalizeTaskPayload:
    @pytest.mark.parametrize("alias", ["instanceId", "instance_id", "_id", "taskId", "task_id", "id"])
    def test_each_alias_becomes_instance_id(self, alias):
        payload = {alias: "b1:entry_check:1", "title": "x"}
        assert normalize_task_payload(payload) == {"instanceId": "b1:entry_check:1", "title": "x"}

    def test_first_non_empty_alias_wins_and_others_are_dropped(self):
        payload = {"instanceId": "", "_id": "b1:entry_check:1", "id": "legacy-7"}
        assert normalize_task_payload(payload) == {"instanceId": "b1:entry_check:1"}

    def test_no_alias(self):
        assert normalize_task_payload({"title": "x"}) == {"title": "x"}


@pytest.mark.unit
class TestReads:
    @respx.mock
    async def test_get_todos(self, ledger):
        route = respx.post(f"{BASE_URL}/tasks/todos").mock(
            return_value=httpx.Response(200, json={"success": True, "data": [_task(), _task("b1:glucose_water:1")]})
        )

        todos = await ledger.get_todos("b1", 1)

        assert [t.instance_id for t in todos] == ["b1:entry_check:1", "b1:glucose_water:1"]
        assert json.loads(route.calls.last.request.content) == {"batchId": "b1", "dayOfAge": 1}

    @respx.mock
    async def test_get_todos_normalizes_legacy_ids(self, ledger):
        legacy = _task()
        legacy["_id"] = legacy.pop("instanceId")
        respx.post(f"{BASE_URL}/tasks/todos").mock(return_value=httpx.Response(200, json={"data": [legacy]}))

        todos = await ledger.get_todos("b1", 1)

        assert todos[0].instance_id == "b1:entry_check:1"

    @respx.mock
    async def test_get_upcoming_keys_are_ints(self, ledger):
        respx.post(f"{BASE_URL}/tasks/upcoming").mock(
            return_value=httpx.Response(
                200, json={"data": {"10": [_task("b1:feed_control:10", dayOfAge=10)], "9": [_task(dayOfAge=9)]}}
            )
        )

        upcoming = await ledger.get_upcoming("b1", 9, 10)

        assert list(upcoming) == [9, 10]

    @respx.mock
    async def test_get_history_sends_limit(self, ledger):
        route = respx.post(f"{BASE_URL}/tasks/history").mock(return_value=httpx.Response(200, json={"data": []}))

        assert await ledger.get_history("b1", limit=5) == []
        assert json.loads(route.calls.last.request.content) == {"batchId": "b1", "limit": 5}

    @respx.mock
    async def test_get_batch(self, ledger):
        respx.get(f"{BASE_URL}/batches/b1").mock(
            return_value=httpx.Response(
                200, json={"data": {"id": "b1", "batchNumber": "B-01", "entryDate": "2024-03-01", "status": "active"}}
            )
        )

        batch = await ledger.get_batch("b1")

        assert batch.batch_number == "B-01"
        assert batch.is_active

    async def test_requires_batch_id_without_network(self, ledger):
        with pytest.raises(CallerError, match="batchId"):
            await ledger.get_todos("", 1)


@pytest.mark.unit
class TestComplete:
    @respx.mock
    async def test_complete_payload(self, ledger):
        route = respx.post(f"{BASE_URL}/tasks/complete").mock(
            return_value=httpx.Response(200, json={"success": True, "alreadyCompleted": False, "message": "Completed"})
        )

        result = await ledger.complete(
            "b1", "b1:entry_check:1", completed_by="ana", completed_at=datetime(2024, 3, 1, 7, tzinfo=UTC)
        )

        assert result.success
        assert not result.already_completed
        assert json.loads(route.calls.last.request.content) == {
            "batchId": "b1",
            "instanceId": "b1:entry_check:1",
            "completedAt": "2024-03-01T07:00:00+00:00",
            "completedBy": "ana",
            "notes": "",
        }

    @respx.mock
    async def test_already_completed_is_success(self, ledger):
        respx.post(f"{BASE_URL}/tasks/complete").mock(
            return_value=httpx.Response(200, json={"success": True, "alreadyCompleted": True})
        )

        result = await ledger.complete("b1", "b1:entry_check:1")

        assert result.already_completed

    @respx.mock
    async def test_default_operator(self, ledger):
        route = respx.post(f"{BASE_URL}/tasks/complete").mock(return_value=httpx.Response(200, json={}))

        await ledger.complete("b1", "b1:entry_check:1")

        assert json.loads(route.calls.last.request.content)["completedBy"] == "operator"

    async def test_requires_instance_id_without_network(self, ledger):
        with pytest.raises(CallerError, match="instanceId"):
            await ledger.complete("b1", "")


@pytest.mark.unit
class TestErrorMapping:
    @respx.mock
    @pytest.mark.parametrize(
        ("status", "body", "error"),
        [
            (400, {"success": False, "code": "ERR_CALLER", "error": "batchId is required"}, CallerError),
            (404, {"success": False, "code": "ERR_BATCH_NOT_FOUND", "error": "Batch b1 not found"}, BatchNotFoundError),
            (409, {"success": False, "code": "ERR_STALE_INSTANCE", "error": "stale"}, StaleInstanceError),
            (500, {"success": False, "code": "ERR_TRANSIENT", "error": "storage"}, TransientLedgerError),
            (503, None, TransientLedgerError),
        ],
    )
    async def test_status_codes(self, ledger, status, body, error):
        response = httpx.Response(status, json=body) if body is not None else httpx.Response(status, text="busy")
        respx.post(f"{BASE_URL}/tasks/complete").mock(return_value=response)

        with pytest.raises(error):
            await ledger.complete("b1", "b1:entry_check:1")

    @respx.mock
    async def test_stale_code_wins_over_status(self, ledger):
        respx.post(f"{BASE_URL}/tasks/complete").mock(
            return_value=httpx.Response(400, json={"code": "ERR_STALE_INSTANCE", "error": "stale"})
        )

        with pytest.raises(StaleInstanceError):
            await ledger.complete("b1", "b1:entry_check:1")

    @respx.mock
    async def test_timeout_is_transient(self, ledger):
        respx.post(f"{BASE_URL}/tasks/complete").mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(TransientLedgerError, match="timed out"):
            await ledger.complete("b1", "b1:entry_check:1")

    @respx.mock
    async def test_connection_error_is_transient(self, ledger):
        respx.post(f"{BASE_URL}/tasks/todos").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(TransientLedgerError, match="unreachable"):
            await ledger.get_todos("b1", 1)

    @respx.mock
    async def test_malformed_payload_is_transient(self, ledger):
        respx.post(f"{BASE_URL}/tasks/todos").mock(
            return_value=httpx.Response(200, json={"data": [{"instanceId": "b1:entry_check:1"}]})
        )

        with pytest.raises(TransientLedgerError, match="Malformed"):
            await ledger.get_todos("b1", 1)
