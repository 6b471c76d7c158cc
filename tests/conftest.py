"""
Shared test fixtures.

Each test gets its own file-backed SQLite database (via aiosqlite) so the
services run against real separate connections without Docker /
PostgreSQL / Redis.  Realtime deliveries are captured by a recording
transport instead of live WebSockets.

Route ``R1`` has stops A(0) -> B(1) -> C(2) -> D(3), ``R2`` has P(0) -> Q(1)
and ``R3`` shares stop A with ``R1``: A(0) -> E(1).
"""

from __future__ import annotations

from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from taxidispatch.api.container import DispatchContainer, build_container
from taxidispatch.domain.entities import Route, Taxi
from taxidispatch.domain.enums import Direction, TaxiStatus
from taxidispatch.infrastructure.database import Base, create_session_factory
from taxidispatch.infrastructure.models import RouteModel, RouteStopModel, TaxiModel
from taxidispatch.realtime.directory import InMemoryConnectionDirectory
from taxidispatch.realtime.fanout import RealtimeFanout

ROUTE_STOPS = {
    "R1": ["A", "B", "C", "D"],
    "R2": ["P", "Q"],
    "R3": ["A", "E"],
}


class RecordingTransport:
    """Stands in for the WebSocket transport and keeps every message."""

    def __init__(self):
        self.sent: list[tuple[str, dict]] = []
        self.closed = False

    async def send(self, connection_id: str, message: dict) -> bool:
        self.sent.append((connection_id, message))
        return True

    async def close_all(self) -> None:
        self.closed = True

    def __len__(self) -> int:
        return 0

    def events_for(self, connection_id: str) -> list[str]:
        return [m["event"] for c, m in self.sent if c == connection_id]

    def messages_for(self, connection_id: str, event: str) -> list[dict]:
        return [
            m["data"] for c, m in self.sent if c == connection_id and m["event"] == event
        ]

    def clear(self) -> None:
        self.sent.clear()


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables in a fresh database file, then dispose of the engine."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}", echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def routes(session_factory) -> dict[str, Route]:
    async with session_factory() as session:
        models = [
            RouteModel(
                name=name,
                stops=[RouteStopModel(name=s, order=i) for i, s in enumerate(stops)],
            )
            for name, stops in ROUTE_STOPS.items()
        ]
        session.add_all(models)
        await session.flush()
        for m in models:
            await session.refresh(m)
        result = {m.name: m.to_entity() for m in models}
        await session.commit()
    return result


@pytest.fixture
def make_taxi(session_factory, routes):
    """Insert a taxi directly in a given state and return its entity."""
    counter = {"n": 0}

    async def _make(
        driver_id: str,
        current_stop: str,
        status: TaxiStatus = TaxiStatus.ON_TRIP,
        direction: Direction = Direction.FORWARD,
        capacity: int = 10,
        current_load: int = 0,
        route: str = "R1",
        allow_return_pickups: bool = False,
        number_plate: Optional[str] = None,
    ) -> Taxi:
        counter["n"] += 1
        async with session_factory() as session:
            model = TaxiModel(
                number_plate=number_plate or f"T-{counter['n']:03d}",
                route_id=routes[route].id,
                driver_id=driver_id,
                capacity=capacity,
                current_load=current_load,
                current_stop=current_stop,
                direction=direction,
                allow_return_pickups=allow_return_pickups,
                status=status,
            )
            session.add(model)
            await session.flush()
            taxi = model.to_entity()
            await session.commit()
        return taxi

    return _make


# ── Realtime + services ───────────────────────────────────────────────


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def directory() -> InMemoryConnectionDirectory:
    return InMemoryConnectionDirectory()


@pytest.fixture
def container(session_factory, routes, directory, transport) -> DispatchContainer:
    return build_container(session_factory, directory=directory, transport=transport)


@pytest.fixture
def fanout(container) -> RealtimeFanout:
    return container.fanout


@pytest.fixture
def taxi_service(container):
    return container.taxis


@pytest.fixture
def dispatch_service(container):
    return container.dispatch


@pytest.fixture
def connect(fanout):
    """Register live connections (``conn-<user>``) for the given users."""

    async def _connect(*user_ids: str) -> None:
        for user_id in user_ids:
            await fanout.register(user_id, f"conn-{user_id}")

    return _connect
