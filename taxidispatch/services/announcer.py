"""Fans a (new or re-opened) request out to the drivers who can serve it."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxidispatch.domain.eligibility import eligible_taxis_for_request
from taxidispatch.domain.entities import RideRequest, Route
from taxidispatch.domain.enums import REQUIRED_TAXI_STATUS
from taxidispatch.infrastructure.repositories import TaxiRepository
from taxidispatch.realtime import events
from taxidispatch.realtime.fanout import RealtimeFanout

logger = logging.getLogger(__name__)


class RequestAnnouncer:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fanout: RealtimeFanout,
    ):
        self._sessions = session_factory
        self._fanout = fanout

    async def announce(
        self,
        request: RideRequest,
        route: Route,
        exclude_driver_id: Optional[str] = None,
    ) -> int:
        """Notify every eligible driver; returns how many were addressed."""
        try:
            async with self._sessions() as session:
                models = await TaxiRepository(session).list_on_route(
                    route.id, REQUIRED_TAXI_STATUS[request.request_type]
                )
                taxis = [m.to_entity() for m in models]
        except Exception:
            logger.exception("Could not load taxi snapshot for request %s", request.id)
            return 0

        eligible = eligible_taxis_for_request(
            request, route, taxis, exclude_driver_id=exclude_driver_id
        )
        event = events.new_request_event(request)
        payload = events.new_request_payload(request, route)
        for taxi in eligible:
            await self._fanout.notify_user(taxi.driver_id, event, payload)

        logger.info(
            "Request %s (%s) announced to %d driver(s) on route %s",
            request.id,
            request.request_type.value,
            len(eligible),
            route.name,
        )
        return len(eligible)
