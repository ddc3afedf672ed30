from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends  # type: ignore[import-not-found]

from tally.commons.depends import get_services
from tally.core.container import Services
from tally.health import service
from tally.health.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(
    services: Annotated[Services, Depends(get_services)],
) -> HealthResponse:
    return HealthResponse(**(await service.get_health_payload(services)))
