"""
FastAPI application factory.

* Registers routes for routes, taxis, ride requests, realtime and admin.
* Builds the dispatch container (services + realtime fanout) via lifespan
  events and tears it down on shutdown.
* Maps dispatch errors to ``{"detail": ...}`` JSON responses.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taxidispatch.api.container import DispatchContainer, build_container
from taxidispatch.api.routes import admin, catalog, realtime, rides, taxis
from taxidispatch.config import settings
from taxidispatch.domain.errors import DispatchError
from taxidispatch.infrastructure.database import async_session_factory

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Unhandled dispatch error on %s: %s", request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app(container: Optional[DispatchContainer] = None) -> FastAPI:
    """Build the app; pass *container* to skip the default wiring."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = container is None
        if owned:
            app.state.container = build_container(async_session_factory)
        yield
        if owned:
            await app.state.container.close()

    app = FastAPI(
        title="Route Taxi Dispatch API",
        description=(
            "Matches passengers waiting at stops of fixed minibus-taxi "
            "routes with drivers moving along those routes.  Drivers "
            "accept requests concurrently; passengers and watchers get "
            "realtime updates over WebSocket."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    app.add_exception_handler(DispatchError, dispatch_error_handler)

    # Routers
    app.include_router(catalog.router, prefix="/api/v1")
    app.include_router(taxis.router, prefix="/api/v1")
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(realtime.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
