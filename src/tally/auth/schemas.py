from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel


class Credentials(BaseModel):
    # Lengths are checked by AuthService so the messages stay user-facing.
    username: str = ""
    password: str = ""


class SuccessResponse(BaseModel):
    success: bool = True


class MeResponse(BaseModel):
    id: UUID
    username: str
