"""
FastAPI dependency injection helpers.

Identity comes from the gateway in front of the API as two trusted
headers: ``X-User-Id`` and ``X-User-Roles`` (comma separated).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from taxidispatch.api.container import DispatchContainer
from taxidispatch.services.catalog import RouteCatalog
from taxidispatch.services.dispatch import DispatchService
from taxidispatch.services.taxis import TaxiService

PASSENGER = "passenger"
DRIVER = "driver"
ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return ADMIN in self.roles


def parse_principal(
    user_id: Optional[str], roles: Optional[str]
) -> Optional[Principal]:
    if not user_id:
        return None
    parsed = frozenset(r.strip().lower() for r in (roles or "").split(",") if r.strip())
    return Principal(user_id=user_id.strip(), roles=parsed)


async def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_roles: Optional[str] = Header(None),
) -> Principal:
    principal = parse_principal(x_user_id, x_user_roles)
    if principal is None:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    return principal


def require_role(role: str):
    """Dependency that admits only callers holding *role*."""

    async def _check(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has_role(role):
            raise HTTPException(
                status_code=403,
                detail=f"This action requires the '{role}' role.",
            )
        return principal

    return _check


require_passenger = require_role(PASSENGER)
require_driver = require_role(DRIVER)


def get_container(request: Request) -> DispatchContainer:
    return request.app.state.container


def get_catalog(container: DispatchContainer = Depends(get_container)) -> RouteCatalog:
    return container.catalog


def get_taxi_service(
    container: DispatchContainer = Depends(get_container),
) -> TaxiService:
    return container.taxis


def get_dispatch_service(
    container: DispatchContainer = Depends(get_container),
) -> DispatchService:
    return container.dispatch
