from __future__ import annotations

from pydantic import BaseModel


class HealthCheck(BaseModel):
    ok: bool
    configured: bool = True
    detail: str | None = None


class HealthResponse(BaseModel):
    status: str
    environment: str
    db: HealthCheck
    analytics: HealthCheck
    rate_limit: HealthCheck
    tracing: HealthCheck
