"""Unit tests for Redis client retry and fallback functionality."""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from flockcare.core.redis_client import RedisClient


def _connected_client() -> RedisClient:
    client = RedisClient(url="")
    client._enabled = True
    client._client = AsyncMock()
    return client


@pytest.mark.unit
class TestRedisRetryLogic:
    """Tests for Redis retry logic and fallback queue."""

    async def test_delete_with_retry_success_first_attempt(self):
        client = _connected_client()
        client._client.delete = AsyncMock()

        result = await client.delete_with_retry("history:b1:all", "history:b1:20")

        assert result is True
        client._client.delete.assert_called_once_with("history:b1:all", "history:b1:20")

    async def test_delete_with_retry_success_after_retries(self):
        client = _connected_client()
        client._client.delete = AsyncMock(
            side_effect=[RedisConnectionError("First failure"), RedisConnectionError("Second failure"), None]
        )

        result = await client.delete_with_retry("history:b1:all")

        assert result is True
        assert client._client.delete.call_count == 3

    async def test_delete_with_retry_queues_on_failure(self):
        client = _connected_client()
        client._client.delete = AsyncMock(side_effect=RedisConnectionError("Always fails"))

        result = await client.delete_with_retry("key1", "key2")

        assert result is False
        assert list(client._invalidation_queue) == [("key1", "key2")]

    async def test_delete_with_retry_queues_when_connection_lost(self):
        client = RedisClient(url="")
        client._enabled = True
        client._client = None

        result = await client.delete_with_retry("key1")

        assert result is False
        assert list(client._invalidation_queue) == [("key1",)]

    async def test_disabled_client_does_not_queue(self):
        client = RedisClient(url="")

        assert await client.delete_with_retry("key1") is False
        assert len(client._invalidation_queue) == 0

    async def test_process_invalidation_queue_success(self):
        client = _connected_client()
        client._invalidation_queue.append(("key1", "key2"))
        client._invalidation_queue.append(("key3",))
        client._client.delete = AsyncMock()

        await client._process_invalidation_queue()

        assert len(client._invalidation_queue) == 0
        assert client._client.delete.call_count == 2

    async def test_process_invalidation_queue_partial_failure(self):
        client = _connected_client()
        client._invalidation_queue.append(("key1",))
        client._invalidation_queue.append(("key2",))
        client._client.delete = AsyncMock(side_effect=RedisConnectionError("Failure"))

        await client._process_invalidation_queue()

        # Failed item is re-queued and processing stops
        assert len(client._invalidation_queue) == 2
        assert client._client.delete.call_count == 1

    async def test_health_status_tracking(self):
        client = _connected_client()
        client._client.get = AsyncMock(return_value="value")
        client._client.setex = AsyncMock()
        client._client.delete = AsyncMock()

        await client.get("key1")
        await client.set("key2", "value", 60)
        await client.delete("key3")

        status = client.get_health_status()

        assert status["enabled"] is True
        assert status["connected"] is True
        assert status["total_operations"] == 3
        assert status["failure_count"] == 0
        assert status["last_successful_operation"] is not None

    async def test_health_status_tracks_failures(self):
        client = _connected_client()
        client._client.get = AsyncMock(side_effect=RedisConnectionError("Failure"))
        client._client.delete = AsyncMock(side_effect=RedisConnectionError("Failure"))

        assert await client.get("key1") is None
        assert await client.delete("key2") is False

        status = client.get_health_status()

        assert status["total_operations"] == 2
        assert status["failure_count"] == 2

    async def test_fallback_queue_max_size(self):
        client = RedisClient(url="")
        client._enabled = True
        client._client = None

        for i in range(1050):
            await client.delete_with_retry(f"key{i}")

        assert len(client._invalidation_queue) == 1000


@pytest.mark.unit
class TestCounters:
    async def test_increment_sets_ttl(self):
        client = _connected_client()
        client._client.incr = AsyncMock(return_value=2)
        client._client.expire = AsyncMock()

        assert await client.increment("scheduler:job:verify_pending:success_count", ttl_seconds=60) == 2
        client._client.expire.assert_called_once_with("scheduler:job:verify_pending:success_count", 60)

    async def test_increment_without_redis(self):
        client = RedisClient(url="")

        assert await client.increment("counter") is None

    async def test_increment_error(self):
        client = _connected_client()
        client._client.incr = AsyncMock(side_effect=RedisConnectionError("Failure"))

        assert await client.increment("counter") is None
        assert client.get_health_status()["failure_count"] == 1
