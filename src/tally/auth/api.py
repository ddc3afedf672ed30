from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response  # type: ignore[import-not-found]
from sqlalchemy.ext.asyncio import AsyncSession  # type: ignore[import-not-found]

from tally.auth.depends import current_user_id_required
from tally.auth.exceptions import UNAUTHORIZED, AuthUnauthorizedException
from tally.auth.schemas import Credentials, MeResponse, SuccessResponse
from tally.commons.depends import database_session, get_services
from tally.commons.logging import logger
from tally.core.container import Services
from tally.core.settings import Settings

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _set_session_cookie(resp: Response, token: str, settings: Settings) -> None:
    resp.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=bool(settings.AUTH_COOKIE_SECURE),
        samesite=str(settings.AUTH_COOKIE_SAMESITE),
        path="/",
        max_age=int(settings.AUTH_SESSION_TTL_DAYS) * 24 * 60 * 60,
    )


def _clear_session_cookie(resp: Response, settings: Settings) -> None:
    resp.delete_cookie(key=settings.AUTH_COOKIE_NAME, path="/")


def _client_info(request: Request) -> dict[str, str | None]:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


@router.post("/register", response_model=SuccessResponse)
async def register(
    req: Credentials,
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(database_session)],
    services: Annotated[Services, Depends(get_services)],
) -> SuccessResponse:
    try:
        user, token = await services.auth.register(
            session, username=req.username, password=req.password
        )
    except Exception as exc:
        await services.otlp.log_auth_event(
            "register", success=False, error_message=str(exc), **_client_info(request)
        )
        raise

    services.analytics.capture(str(user.id), "user_registered", {"provider": "local"})
    await services.otlp.log_auth_event(
        "register", success=True, user_id=user.id, **_client_info(request)
    )
    _set_session_cookie(response, token, services.settings)
    return SuccessResponse()


@router.post("/login", response_model=SuccessResponse)
async def login(
    req: Credentials,
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(database_session)],
    services: Annotated[Services, Depends(get_services)],
) -> SuccessResponse:
    try:
        user, token = await services.auth.login(
            session, username=req.username, password=req.password
        )
    except Exception as exc:
        await services.otlp.log_auth_event(
            "login_failure", success=False, error_message=str(exc), **_client_info(request)
        )
        raise

    services.analytics.capture(str(user.id), "user_logged_in", {"provider": "local"})
    await services.otlp.log_auth_event(
        "login", success=True, user_id=user.id, **_client_info(request)
    )
    _set_session_cookie(response, token, services.settings)
    return SuccessResponse()


@router.post("/logout", response_model=SuccessResponse)
async def logout(
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(database_session)],
    services: Annotated[Services, Depends(get_services)],
) -> SuccessResponse:
    token = request.cookies.get(services.settings.AUTH_COOKIE_NAME)
    if token:
        try:
            await services.auth.logout(session, token=token)
        except Exception:
            # The cookie is cleared regardless; a stale row expires on its own.
            logger.exception("Failed to delete session during logout")
        else:
            services.analytics.capture("anonymous", "user_logged_out")
            await services.otlp.log_auth_event(
                "logout", success=True, **_client_info(request)
            )
    _clear_session_cookie(response, services.settings)
    return SuccessResponse()


@router.get("/me", response_model=MeResponse)
async def me(
    user_id: Annotated[UUID, Depends(current_user_id_required)],
    session: Annotated[AsyncSession, Depends(database_session)],
    services: Annotated[Services, Depends(get_services)],
) -> MeResponse:
    user = await services.auth.get_user(session, user_id=user_id)
    if user is None:
        raise AuthUnauthorizedException(UNAUTHORIZED)
    return MeResponse(id=user.id, username=user.username)
