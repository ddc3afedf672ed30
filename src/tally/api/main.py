from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI  # type: ignore[import-not-found]
from fastapi.middleware.cors import CORSMiddleware  # type: ignore[import-not-found]

from tally.api.exceptions import configure_global_exception_handlers
from tally.api.routers import configure_routers
from tally.auth.depends import current_user_id_optional
from tally.commons.logging import initialize_logger
from tally.core.container import Services
from tally.telemetry.middleware import RequestTelemetryMiddleware
from tally.telemetry.sentry import configure_sentry


def _cors_origins(raw: str) -> list[str]:
    # Be forgiving about localhost vs 127.0.0.1, since devs commonly use either.
    origins: list[str] = []
    for o in (o.strip() for o in str(raw).split(",")):
        if not o:
            continue
        origins.append(o)
        if o.startswith("http://localhost:"):
            origins.append(o.replace("http://localhost:", "http://127.0.0.1:", 1))
        elif o.startswith("http://127.0.0.1:"):
            origins.append(o.replace("http://127.0.0.1:", "http://localhost:", 1))
    seen: set[str] = set()
    return [o for o in origins if not (o in seen or seen.add(o))]


def build_app(services: Services | None = None) -> FastAPI:
    initialize_logger()
    services = services or Services.create()
    settings = services.settings

    configure_sentry(settings)
    # Tracing must be live before the first request, lifespan or not.
    services.tracing.init()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await services.startup()
        try:
            yield
        finally:
            await services.shutdown()

    app = FastAPI(
        title=settings.API_TITLE,
        version=settings.API_VERSION,
        lifespan=lifespan,
        # Every routed request reads the session cookie to establish identity.
        dependencies=[Depends(current_user_id_optional)],
    )
    app.state.services = services

    origins = _cors_origins(settings.CORS_ORIGINS)
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Trace-Id"],
        )
    # Added last so it wraps CORS and sees every response.
    app.add_middleware(RequestTelemetryMiddleware, tracing=services.tracing)

    configure_routers(app)
    configure_global_exception_handlers(app)
    return app


app = build_app()
