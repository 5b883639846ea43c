"""FastAPI application factory.

The lifespan opens one :class:`~smsrental.service.RentalService` (database
connection and provider clients) on startup and closes it on shutdown.

Typical usage::

    import uvicorn
    from smsrental.api import create_app

    uvicorn.run(create_app(), host="127.0.0.1", port=8080)

Tests inject a ready-made service instead::

    app = create_app(settings, service_factory=lambda s: make_service(s))
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from smsrental import __version__
from smsrental.api.deps import AllowAllGate, AuthorizationGate
from smsrental.api.errors import add_exception_handlers
from smsrental.api.routes import router
from smsrental.core.settings import Settings
from smsrental.service import RentalService

__all__ = ["create_app", "ServiceFactory"]

logger = logging.getLogger(__name__)

#: Builds the service the app serves; awaited once in the lifespan.
ServiceFactory = Callable[[Settings], Awaitable[RentalService]]


def create_app(
    settings: Settings | None = None,
    *,
    service_factory: ServiceFactory | None = None,
    gate: AuthorizationGate | None = None,
) -> FastAPI:
    """Build the HTTP application.

    Args:
        settings: Application settings; loaded from the environment when
            omitted.
        service_factory: Coroutine function producing the service.
            Defaults to :meth:`RentalService.open`.
        gate: Authorization gate.  Defaults to :class:`AllowAllGate`.
    """
    settings = settings or Settings()
    factory = service_factory or RentalService.open

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        service = await factory(settings)
        app.state.service = service
        logger.info(
            "smsrental API started (providers: %s)",
            ", ".join(str(p) for p in service.enabled_providers) or "none",
        )
        try:
            yield
        finally:
            await service.close()
            logger.info("smsrental API stopped")

    app = FastAPI(
        title="smsrental",
        description="Aggregates leased SMS numbers and their received messages.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.gate = gate or AllowAllGate()
    add_exception_handlers(app)
    app.include_router(router)
    return app
