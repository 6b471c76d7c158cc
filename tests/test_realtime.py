"""
Realtime fanout tests.

Covers the in-memory directory, the Redis directory (mocked Redis) and
the fanout's best-effort delivery: offline users, failing and slow
transports never raise into the caller.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from taxidispatch.api.container import create_directory
from taxidispatch.config import Settings
from taxidispatch.realtime.directory import (
    InMemoryConnectionDirectory,
    RedisConnectionDirectory,
)
from taxidispatch.realtime.fanout import RealtimeFanout, WebSocketTransport


class TestInMemoryDirectory:
    @pytest.mark.asyncio
    async def test_latest_registration_wins(self):
        directory = InMemoryConnectionDirectory()
        assert await directory.register("u1", "c1") is None
        assert await directory.register("u1", "c2") == "c1"
        assert await directory.lookup("u1") == "c2"

    @pytest.mark.asyncio
    async def test_stale_disconnect_keeps_newer_connection(self):
        directory = InMemoryConnectionDirectory()
        await directory.register("u1", "c1")
        await directory.register("u1", "c2")
        await directory.unregister("c1")
        assert await directory.lookup("u1") == "c2"

    @pytest.mark.asyncio
    async def test_unregister_drops_user_and_rooms(self):
        directory = InMemoryConnectionDirectory()
        await directory.register("u1", "c1")
        await directory.subscribe("c1", "7")
        await directory.subscribe("c1", "8")
        await directory.unregister("c1")
        assert await directory.lookup("u1") is None
        assert await directory.subscribers("7") == set()
        assert await directory.subscriptions("c1") == set()

    @pytest.mark.asyncio
    async def test_rooms(self):
        directory = InMemoryConnectionDirectory()
        await directory.subscribe("c1", "7")
        await directory.subscribe("c2", "7")
        await directory.unsubscribe("c1", "7")
        assert await directory.subscribers("7") == {"c2"}
        assert await directory.subscriptions("c2") == {"7"}

    @pytest.mark.asyncio
    async def test_connection_rebound_to_other_user(self):
        directory = InMemoryConnectionDirectory()
        await directory.register("u1", "c1")
        await directory.register("u2", "c1")
        assert await directory.lookup("u1") is None
        assert await directory.lookup("u2") == "c1"


class TestRedisDirectory:
    """Tests the Redis directory logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_register_returns_replaced_connection(self):
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(return_value=None)
        mock_redis.set = AsyncMock(side_effect=["c1", True])

        directory = RedisConnectionDirectory(mock_redis, ttl_seconds=60)
        assert await directory.register("u1", "c2") == "c1"
        first = mock_redis.set.call_args_list[0]
        assert first.args == ("rt:user:u1", "c2")
        assert first.kwargs == {"get": True, "ex": 60}
        mock_redis.set.assert_any_call("rt:conn:c2:user", "u1", ex=60)
        mock_redis.eval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connection_rebound_to_other_user_drops_old_mapping(self):
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(return_value="u1")
        mock_redis.set = AsyncMock(side_effect=[None, True])

        directory = RedisConnectionDirectory(mock_redis)
        assert await directory.register("u2", "c1") is None

        mock_redis.eval.assert_awaited_once()
        assert mock_redis.eval.call_args.args[1:] == (1, "rt:user:u1", "c1")

    @pytest.mark.asyncio
    async def test_same_user_reregistering_keeps_mapping(self):
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(return_value="u1")
        mock_redis.set = AsyncMock(side_effect=["c1", True])

        directory = RedisConnectionDirectory(mock_redis)
        assert await directory.register("u1", "c1") is None
        mock_redis.eval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unregister_uses_compare_and_delete(self):
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(return_value="u1")
        mock_redis.smembers = AsyncMock(return_value={"7"})

        directory = RedisConnectionDirectory(mock_redis)
        await directory.unregister("c1")

        mock_redis.eval.assert_awaited_once()
        args = mock_redis.eval.call_args.args
        assert args[1:] == (1, "rt:user:u1", "c1")
        mock_redis.srem.assert_awaited_once_with("rt:room:7", "c1")
        mock_redis.delete.assert_awaited_once_with(
            "rt:conn:c1:user", "rt:conn:c1:rooms"
        )

    @pytest.mark.asyncio
    async def test_subscribe_tracks_both_sides(self):
        mock_redis = AsyncMock()
        directory = RedisConnectionDirectory(mock_redis, prefix="test")
        await directory.subscribe("c1", "7")
        mock_redis.sadd.assert_any_await("test:room:7", "c1")
        mock_redis.sadd.assert_any_await("test:conn:c1:rooms", "7")
        mock_redis.expire.assert_any_await("test:room:7", 86400)
        mock_redis.expire.assert_any_await("test:conn:c1:rooms", 86400)

    @pytest.mark.asyncio
    async def test_subscribers(self):
        mock_redis = AsyncMock()
        mock_redis.smembers = AsyncMock(return_value={"c1", "c2"})
        directory = RedisConnectionDirectory(mock_redis)
        assert await directory.subscribers("7") == {"c1", "c2"}

    @pytest.mark.asyncio
    async def test_close(self):
        mock_redis = AsyncMock()
        await RedisConnectionDirectory(mock_redis).close()
        mock_redis.aclose.assert_awaited_once()


class _FailingTransport:
    async def send(self, connection_id: str, message: dict) -> bool:
        raise RuntimeError("socket closed")


class _SlowTransport:
    async def send(self, connection_id: str, message: dict) -> bool:
        await asyncio.sleep(5)
        return True


class _RendezvousTransport:
    """Each send completes only once *expected* sends are in flight together."""

    def __init__(self, expected: int):
        self.expected = expected
        self.in_flight = 0
        self.all_started = asyncio.Event()

    async def send(self, connection_id: str, message: dict) -> bool:
        self.in_flight += 1
        if self.in_flight == self.expected:
            self.all_started.set()
        await self.all_started.wait()
        return True


class TestFanout:
    @pytest.mark.asyncio
    async def test_notify_user_wraps_event(self, transport):
        fanout = RealtimeFanout(InMemoryConnectionDirectory(), transport)
        await fanout.register("u1", "c1")
        assert await fanout.notify_user("u1", "hello", {"x": 1}) is True
        assert transport.sent == [("c1", {"event": "hello", "data": {"x": 1}})]

    @pytest.mark.asyncio
    async def test_offline_user_is_a_no_op(self, transport):
        fanout = RealtimeFanout(InMemoryConnectionDirectory(), transport)
        assert await fanout.notify_user("ghost", "hello", {}) is False
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_broadcast_to_room(self, transport):
        fanout = RealtimeFanout(InMemoryConnectionDirectory(), transport)
        await fanout.subscribe("c1", 7)
        await fanout.subscribe("c2", 7)
        await fanout.subscribe("c3", 8)
        assert await fanout.broadcast_to_room(7, "taxiUpdate", {"id": 7}) == 2
        assert {c for c, _ in transport.sent} == {"c1", "c2"}

    @pytest.mark.asyncio
    async def test_failed_delivery_is_swallowed(self):
        fanout = RealtimeFanout(InMemoryConnectionDirectory(), _FailingTransport())
        await fanout.register("u1", "c1")
        assert await fanout.notify_user("u1", "hello", {}) is False

    @pytest.mark.asyncio
    async def test_slow_delivery_times_out(self):
        fanout = RealtimeFanout(
            InMemoryConnectionDirectory(), _SlowTransport(), send_timeout=0.01
        )
        await fanout.subscribe("c1", 7)
        assert await fanout.broadcast_to_room(7, "taxiUpdate", {}) == 0

    @pytest.mark.asyncio
    async def test_room_broadcast_sends_concurrently(self):
        fanout = RealtimeFanout(
            InMemoryConnectionDirectory(), _RendezvousTransport(3), send_timeout=1
        )
        for connection_id in ("c1", "c2", "c3"):
            await fanout.subscribe(connection_id, 7)
        assert await fanout.broadcast_to_room(7, "taxiUpdate", {}) == 3

    @pytest.mark.asyncio
    async def test_directory_failure_is_swallowed(self, transport):
        directory = AsyncMock(spec=InMemoryConnectionDirectory)
        directory.lookup.side_effect = ConnectionError("redis down")
        directory.subscribers.side_effect = ConnectionError("redis down")
        fanout = RealtimeFanout(directory, transport)
        assert await fanout.notify_user("u1", "hello", {}) is False
        assert await fanout.broadcast_to_room(7, "taxiUpdate", {}) == 0


class TestWebSocketTransport:
    @pytest.mark.asyncio
    async def test_send_to_attached_socket(self):
        socket = AsyncMock()
        transport = WebSocketTransport()
        transport.attach("c1", socket)
        assert await transport.send("c1", {"event": "e", "data": {}}) is True
        socket.send_json.assert_awaited_once_with({"event": "e", "data": {}})

    @pytest.mark.asyncio
    async def test_unknown_connection(self):
        assert await WebSocketTransport().send("c1", {}) is False

    @pytest.mark.asyncio
    async def test_close_all(self):
        socket = AsyncMock()
        transport = WebSocketTransport()
        transport.attach("c1", socket)
        await transport.close_all()
        socket.close.assert_awaited_once()
        assert len(transport) == 0


class TestDirectorySelection:
    def test_memory_by_default(self):
        directory = create_directory(Settings(connection_directory="memory"))
        assert isinstance(directory, InMemoryConnectionDirectory)

    def test_redis_when_configured(self):
        directory = create_directory(
            Settings(connection_directory="redis", redis_url="redis://localhost:6379/5")
        )
        assert isinstance(directory, RedisConnectionDirectory)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="carrier-pigeon"):
            create_directory(Settings(connection_directory="carrier-pigeon"))
