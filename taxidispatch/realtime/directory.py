"""
Connection directory: who is currently reachable, and who watches which taxi.

Two maps are kept:

* ``user_id -> connection_id``   one live connection per user, the latest
  registration wins.
* ``taxi_id -> {connection_id}`` subscription rooms for live taxi tracking.

The directory is a cache, never a source of truth.  Losing it only means
some clients miss best-effort notifications until they reconnect.

``InMemoryConnectionDirectory`` serves a single process.
``RedisConnectionDirectory`` shares the maps across API processes; the
compare-and-delete on unregister runs as a Lua script so a stale
disconnect cannot remove a newer connection's mapping.  Every Redis key
carries a TTL so mappings of a crashed process do not linger forever.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class ConnectionDirectory(ABC):
    @abstractmethod
    async def register(self, user_id: str, connection_id: str) -> Optional[str]:
        """Map *user_id* to *connection_id*; returns the replaced connection."""

    @abstractmethod
    async def lookup(self, user_id: str) -> Optional[str]: ...

    @abstractmethod
    async def unregister(self, connection_id: str) -> None:
        """Forget the connection and all of its room subscriptions."""

    @abstractmethod
    async def subscribe(self, connection_id: str, taxi_id: str) -> None: ...

    @abstractmethod
    async def unsubscribe(self, connection_id: str, taxi_id: str) -> None: ...

    @abstractmethod
    async def subscribers(self, taxi_id: str) -> set[str]: ...

    @abstractmethod
    async def subscriptions(self, connection_id: str) -> set[str]: ...

    async def close(self) -> None:
        return None


class InMemoryConnectionDirectory(ConnectionDirectory):
    def __init__(self):
        self._users: dict[str, str] = {}
        self._owners: dict[str, str] = {}  # connection_id -> user_id
        self._rooms: dict[str, set[str]] = {}
        self._subscriptions: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

    async def register(self, user_id: str, connection_id: str) -> Optional[str]:
        async with self._lock:
            previous = self._users.get(user_id)
            # A connection re-authenticating as another user drops the old mapping
            old_user = self._owners.get(connection_id)
            if old_user is not None and old_user != user_id:
                if self._users.get(old_user) == connection_id:
                    del self._users[old_user]
            self._users[user_id] = connection_id
            self._owners[connection_id] = user_id
        if previous and previous != connection_id:
            logger.info(
                "User %s reconnected (old connection %s replaced by %s)",
                user_id,
                previous,
                connection_id,
            )
        return previous if previous != connection_id else None

    async def lookup(self, user_id: str) -> Optional[str]:
        return self._users.get(user_id)

    async def unregister(self, connection_id: str) -> None:
        async with self._lock:
            user_id = self._owners.pop(connection_id, None)
            if user_id is not None and self._users.get(user_id) == connection_id:
                del self._users[user_id]
            for taxi_id in self._subscriptions.pop(connection_id, set()):
                room = self._rooms.get(taxi_id)
                if room is None:
                    continue
                room.discard(connection_id)
                if not room:
                    del self._rooms[taxi_id]

    async def subscribe(self, connection_id: str, taxi_id: str) -> None:
        async with self._lock:
            self._rooms.setdefault(taxi_id, set()).add(connection_id)
            self._subscriptions.setdefault(connection_id, set()).add(taxi_id)

    async def unsubscribe(self, connection_id: str, taxi_id: str) -> None:
        async with self._lock:
            room = self._rooms.get(taxi_id)
            if room is not None:
                room.discard(connection_id)
                if not room:
                    del self._rooms[taxi_id]
            subs = self._subscriptions.get(connection_id)
            if subs is not None:
                subs.discard(taxi_id)

    async def subscribers(self, taxi_id: str) -> set[str]:
        return set(self._rooms.get(taxi_id, ()))

    async def subscriptions(self, connection_id: str) -> set[str]:
        return set(self._subscriptions.get(connection_id, ()))


class RedisConnectionDirectory(ConnectionDirectory):
    """Directory shared by every API process through Redis."""

    _DELETE_IF_OWNER = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self, client: aioredis.Redis, prefix: str = "rt", ttl_seconds: int = 86400
    ):
        self.redis = client
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    def _user_key(self, user_id: str) -> str:
        return f"{self.prefix}:user:{user_id}"

    def _owner_key(self, connection_id: str) -> str:
        return f"{self.prefix}:conn:{connection_id}:user"

    def _subs_key(self, connection_id: str) -> str:
        return f"{self.prefix}:conn:{connection_id}:rooms"

    def _room_key(self, taxi_id: str) -> str:
        return f"{self.prefix}:room:{taxi_id}"

    async def register(self, user_id: str, connection_id: str) -> Optional[str]:
        # A connection re-authenticating as another user drops the old mapping
        old_user = await self.redis.get(self._owner_key(connection_id))
        if old_user is not None and old_user != user_id:
            await self.redis.eval(
                self._DELETE_IF_OWNER, 1, self._user_key(old_user), connection_id
            )
        previous = await self.redis.set(
            self._user_key(user_id), connection_id, get=True, ex=self.ttl_seconds
        )
        await self.redis.set(
            self._owner_key(connection_id), user_id, ex=self.ttl_seconds
        )
        return previous if previous != connection_id else None

    async def lookup(self, user_id: str) -> Optional[str]:
        return await self.redis.get(self._user_key(user_id))

    async def unregister(self, connection_id: str) -> None:
        user_id = await self.redis.get(self._owner_key(connection_id))
        if user_id:
            await self.redis.eval(
                self._DELETE_IF_OWNER, 1, self._user_key(user_id), connection_id
            )
        rooms = await self.redis.smembers(self._subs_key(connection_id))
        for taxi_id in rooms or ():
            await self.redis.srem(self._room_key(taxi_id), connection_id)
        await self.redis.delete(
            self._owner_key(connection_id), self._subs_key(connection_id)
        )

    async def subscribe(self, connection_id: str, taxi_id: str) -> None:
        room_key = self._room_key(taxi_id)
        subs_key = self._subs_key(connection_id)
        await self.redis.sadd(room_key, connection_id)
        await self.redis.sadd(subs_key, taxi_id)
        await self.redis.expire(room_key, self.ttl_seconds)
        await self.redis.expire(subs_key, self.ttl_seconds)

    async def unsubscribe(self, connection_id: str, taxi_id: str) -> None:
        await self.redis.srem(self._room_key(taxi_id), connection_id)
        await self.redis.srem(self._subs_key(connection_id), taxi_id)

    async def subscribers(self, taxi_id: str) -> set[str]:
        return set(await self.redis.smembers(self._room_key(taxi_id)) or ())

    async def subscriptions(self, connection_id: str) -> set[str]:
        return set(await self.redis.smembers(self._subs_key(connection_id)) or ())

    async def close(self) -> None:
        await self.redis.aclose()
