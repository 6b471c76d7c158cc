"""
Per-application wiring of the dispatch core.

The lifespan builds one ``DispatchContainer`` and stores it on
``app.state``; route handlers reach the services through it.  Tests build
their own container around a SQLite session factory and hand it to
``create_app``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxidispatch.config import Settings, settings
from taxidispatch.infrastructure.redis_client import create_redis
from taxidispatch.realtime.directory import (
    ConnectionDirectory,
    InMemoryConnectionDirectory,
    RedisConnectionDirectory,
)
from taxidispatch.realtime.fanout import RealtimeFanout, WebSocketTransport
from taxidispatch.services.announcer import RequestAnnouncer
from taxidispatch.services.catalog import RouteCatalog
from taxidispatch.services.dispatch import DispatchService
from taxidispatch.services.taxis import TaxiService

logger = logging.getLogger(__name__)


def create_directory(config: Settings = settings) -> ConnectionDirectory:
    if config.connection_directory == "redis":
        logger.info("Using Redis connection directory at %s", config.redis_url)
        return RedisConnectionDirectory(
            create_redis(config.redis_url), ttl_seconds=config.connection_ttl_seconds
        )
    if config.connection_directory != "memory":
        raise ValueError(
            f"Unknown connection_directory '{config.connection_directory}'"
        )
    return InMemoryConnectionDirectory()


@dataclass
class DispatchContainer:
    session_factory: async_sessionmaker[AsyncSession]
    transport: WebSocketTransport
    fanout: RealtimeFanout
    catalog: RouteCatalog
    taxis: TaxiService
    dispatch: DispatchService

    async def close(self) -> None:
        await self.transport.close_all()
        await self.fanout.directory.close()


def build_container(
    session_factory: async_sessionmaker[AsyncSession],
    directory: Optional[ConnectionDirectory] = None,
    transport: Optional[WebSocketTransport] = None,
    config: Settings = settings,
) -> DispatchContainer:
    transport = transport if transport is not None else WebSocketTransport()
    fanout = RealtimeFanout(
        directory if directory is not None else create_directory(config),
        transport,
        send_timeout=config.fanout_send_timeout_seconds,
    )
    announcer = RequestAnnouncer(session_factory, fanout)
    return DispatchContainer(
        session_factory=session_factory,
        transport=transport,
        fanout=fanout,
        catalog=RouteCatalog(session_factory),
        taxis=TaxiService(
            session_factory,
            fanout,
            announcer,
            almost_full_ratio=config.almost_full_ratio,
        ),
        dispatch=DispatchService(session_factory, fanout, announcer),
    )
