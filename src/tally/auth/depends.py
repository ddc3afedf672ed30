from __future__ import annotations

from typing import Annotated
from uuid import UUID

import sentry_sdk  # type: ignore[import-not-found]
from fastapi import Depends, Request, Response  # type: ignore[import-not-found]
from opentelemetry import trace  # type: ignore[import-not-found]

from tally.auth.exceptions import UNAUTHORIZED, AuthUnauthorizedException
from tally.commons.depends import get_services
from tally.core.container import Services
from tally.telemetry.tracing import hash_user_id, set_user_id


async def current_user_id_optional(
    request: Request,
    response: Response,
    services: Annotated[Services, Depends(get_services)],
) -> UUID | None:
    """
    Resolve the session cookie into a user id.

    Installed as an app-level dependency so every routed request validates the
    cookie; FastAPI caches the result, so routes that also depend on it do not
    hit the session store twice. A database session is opened only when a
    cookie is present.
    """
    cookie_name = services.settings.AUTH_COOKIE_NAME
    token = request.cookies.get(cookie_name)
    if not token:
        return None

    await services.database.initialize()
    async with services.database.session() as session:
        status = await services.auth.check_session(session, token=token)

    if status.user_id is None:
        # Stale or forged cookie: drop it so the client stops sending it. The flag
        # lets error responses (which replace `response`) clear it too.
        response.delete_cookie(key=cookie_name, path="/")
        request.state.clear_session_cookie = True
        if status.expired:
            services.analytics.capture("anonymous", "session_expired")
            await services.otlp.log_auth_event("session_expired", success=False)
        return None

    request.state.user_id = status.user_id
    set_user_id(trace.get_current_span(), status.user_id)
    sentry_sdk.set_user({"id": hash_user_id(status.user_id)})
    return status.user_id


async def current_user_id_required(
    user_id: Annotated[UUID | None, Depends(current_user_id_optional)],
) -> UUID:
    if user_id is None:
        raise AuthUnauthorizedException(UNAUTHORIZED)
    return user_id
