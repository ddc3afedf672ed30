"""Endpoints that fail on purpose, to check error reporting end to end."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException  # type: ignore[import-not-found]
from starlette import status  # type: ignore[import-not-found]

router = APIRouter(tags=["debug"])


@router.get("/error")
async def raise_http_error() -> None:
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Test error for Sentry - this is intentional",
    )


@router.get("/throw")
async def raise_uncaught() -> None:
    raise RuntimeError("Uncaught test error for Sentry - this is intentional")
