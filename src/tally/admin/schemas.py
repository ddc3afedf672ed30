from __future__ import annotations

from pydantic import BaseModel


class MigrationStatusResponse(BaseModel):
    migrated: bool
    tables: list[str]
    message: str


class MigrateResponse(BaseModel):
    success: bool = True
    message: str
