"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 3 sample routes with ordered stops
  - 6 sample taxis spread over those routes in various states
  - 3 pending requests (rides and a pickup)
"""

import asyncio

from sqlalchemy import func, select

from taxidispatch.domain.enums import (
    Direction,
    RequestStatus,
    RequestType,
    TaxiStatus,
)
from taxidispatch.infrastructure.database import async_session_factory, engine
from taxidispatch.infrastructure.models import (
    RideRequestModel,
    RouteModel,
    RouteStopModel,
    TaxiModel,
)


ROUTES = {
    "Soweto - Johannesburg CBD": [
        "Bara Taxi Rank",
        "Orlando",
        "Noordgesig",
        "Mayfair",
        "Bree Street Rank",
    ],
    "Alexandra - Sandton": [
        "Pan Africa",
        "London Road",
        "Marlboro",
        "Sandton City",
    ],
    "Tembisa - Midrand": [
        "Tembisa Station",
        "Ivory Park",
        "Rabie Ridge",
        "Midrand Gautrain",
    ],
}

TAXIS = [
    {"plate": "GP 101-ABC", "route": "Soweto - Johannesburg CBD", "driver": "driver-1",
     "capacity": 15, "load": 4, "stop": "Orlando", "direction": Direction.FORWARD,
     "status": TaxiStatus.ON_TRIP, "return_pickups": False},
    {"plate": "GP 102-ABC", "route": "Soweto - Johannesburg CBD", "driver": "driver-2",
     "capacity": 15, "load": 0, "stop": "Bara Taxi Rank", "direction": Direction.FORWARD,
     "status": TaxiStatus.ROAMING, "return_pickups": False},
    {"plate": "GP 103-ABC", "route": "Soweto - Johannesburg CBD", "driver": "driver-3",
     "capacity": 15, "load": 9, "stop": "Mayfair", "direction": Direction.RETURN,
     "status": TaxiStatus.ON_TRIP, "return_pickups": True},
    {"plate": "GP 201-XYZ", "route": "Alexandra - Sandton", "driver": "driver-4",
     "capacity": 10, "load": 0, "stop": "Pan Africa", "direction": Direction.FORWARD,
     "status": TaxiStatus.WAITING, "return_pickups": False},
    {"plate": "GP 202-XYZ", "route": "Alexandra - Sandton", "driver": "driver-5",
     "capacity": 10, "load": 8, "stop": "London Road", "direction": Direction.FORWARD,
     "status": TaxiStatus.ALMOST_FULL, "return_pickups": False},
    {"plate": "GP 301-TMB", "route": "Tembisa - Midrand", "driver": "driver-6",
     "capacity": 15, "load": 0, "stop": "Tembisa Station", "direction": Direction.FORWARD,
     "status": TaxiStatus.NOT_AVAILABLE, "return_pickups": False},
]

REQUESTS = [
    {"passenger": "passenger-1", "route": "Soweto - Johannesburg CBD",
     "type": RequestType.RIDE, "start": "Noordgesig", "end": "Bree Street Rank"},
    {"passenger": "passenger-2", "route": "Soweto - Johannesburg CBD",
     "type": RequestType.PICKUP, "start": "Bara Taxi Rank", "end": ""},
    {"passenger": "passenger-3", "route": "Alexandra - Sandton",
     "type": RequestType.RIDE, "start": "Marlboro", "end": "Sandton City"},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(RouteModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Routes ────────────────────────────────────────────────────
        routes: dict[str, RouteModel] = {}
        for name, stops in ROUTES.items():
            route = RouteModel(
                name=name,
                stops=[RouteStopModel(name=s, order=i) for i, s in enumerate(stops)],
            )
            session.add(route)
            routes[name] = route
        await session.flush()
        print(f"  Created {len(routes)} routes")

        # ── Taxis ─────────────────────────────────────────────────────
        for t in TAXIS:
            session.add(
                TaxiModel(
                    number_plate=t["plate"],
                    route_id=routes[t["route"]].id,
                    driver_id=t["driver"],
                    capacity=t["capacity"],
                    current_load=t["load"],
                    current_stop=t["stop"],
                    direction=t["direction"],
                    allow_return_pickups=t["return_pickups"],
                    status=t["status"],
                )
            )
        await session.flush()
        print(f"  Created {len(TAXIS)} taxis")

        # ── Pending requests ──────────────────────────────────────────
        for r in REQUESTS:
            session.add(
                RideRequestModel(
                    passenger_id=r["passenger"],
                    route_id=routes[r["route"]].id,
                    request_type=r["type"],
                    starting_stop=r["start"],
                    destination_stop=r["end"],
                    status=RequestStatus.PENDING,
                )
            )
        await session.flush()
        print(f"  Created {len(REQUESTS)} pending requests")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
