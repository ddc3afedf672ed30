from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request  # type: ignore[import-not-found]
from sqlalchemy.ext.asyncio import AsyncSession  # type: ignore[import-not-found]

from tally.core.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


async def database_session(
    services: Annotated[Services, Depends(get_services)],
) -> AsyncGenerator[AsyncSession, None]:
    # Lazily initialize so apps served without lifespan events still work.
    await services.database.initialize()
    async with services.database.session() as session:
        yield session
