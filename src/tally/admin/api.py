from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header  # type: ignore[import-not-found]
from fastapi.responses import JSONResponse  # type: ignore[import-not-found]
from sqlalchemy.ext.asyncio import AsyncSession  # type: ignore[import-not-found]
from starlette import status  # type: ignore[import-not-found]

from tally.admin.schemas import MigrateResponse, MigrationStatusResponse
from tally.commons.depends import database_session, get_services
from tally.commons.logging import logger
from tally.core.container import Services

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/migrate", response_model=MigrationStatusResponse)
async def migration_status(
    session: Annotated[AsyncSession, Depends(database_session)],
    services: Annotated[Services, Depends(get_services)],
):
    try:
        result = await services.admin.status(session)
    except Exception as exc:
        logger.exception("Failed to check migration status")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to check migration status", "details": str(exc)},
        )
    return MigrationStatusResponse(
        migrated=result.migrated, tables=result.tables, message=result.message
    )


@router.post("/migrate", response_model=MigrateResponse)
async def migrate(
    session: Annotated[AsyncSession, Depends(database_session)],
    services: Annotated[Services, Depends(get_services)],
    authorization: Annotated[str | None, Header()] = None,
):
    if not services.admin.is_authorized(authorization):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"}
        )
    try:
        await services.admin.migrate(session)
    except Exception as exc:
        logger.exception("Migration failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Migration failed", "details": str(exc)},
        )
    logger.info("Database migration completed")
    return MigrateResponse(message="Database migration completed successfully")
