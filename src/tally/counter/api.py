from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends  # type: ignore[import-not-found]
from sqlalchemy.ext.asyncio import AsyncSession  # type: ignore[import-not-found]

from tally.auth.depends import current_user_id_required
from tally.commons.depends import database_session, get_services
from tally.core.container import Services
from tally.counter.schemas import CounterAction, CounterValue

router = APIRouter(prefix="/api/counter", tags=["counter"])


@router.get("", response_model=CounterValue)
async def get_counter(
    user_id: Annotated[UUID, Depends(current_user_id_required)],
    session: Annotated[AsyncSession, Depends(database_session)],
    services: Annotated[Services, Depends(get_services)],
) -> CounterValue:
    value = await services.counter.get_value(session, user_id=user_id)
    return CounterValue(value=value)


@router.post("", response_model=CounterValue)
async def update_counter(
    req: CounterAction,
    user_id: Annotated[UUID, Depends(current_user_id_required)],
    session: Annotated[AsyncSession, Depends(database_session)],
    services: Annotated[Services, Depends(get_services)],
) -> CounterValue:
    value = await services.counter.apply(session, user_id=user_id, action=req.action)
    return CounterValue(value=value)
