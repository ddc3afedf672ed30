from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from uuid import UUID

import sqlalchemy as sa  # type: ignore[import-not-found]
from sqlalchemy.ext.asyncio import AsyncSession  # type: ignore[import-not-found]

from tally.auth.models import Session, User


@dataclass(frozen=True)
class AuthRepository:
    async def get_user_by_username(
        self, session: AsyncSession, *, username: str
    ) -> User | None:
        stmt = sa.select(User).where(User.username == username)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def get_user_by_id(self, session: AsyncSession, *, user_id: UUID) -> User | None:
        stmt = sa.select(User).where(User.id == user_id)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def insert_user(
        self,
        session: AsyncSession,
        *,
        user_id: UUID,
        username: str,
        password_hash: str,
    ) -> User:
        user = User(id=user_id, username=username, password_hash=password_hash)
        session.add(user)
        await session.flush()
        return user

    async def insert_session(
        self,
        session: AsyncSession,
        *,
        session_id: str,
        user_id: UUID,
        expires_at: dt.datetime,
    ) -> Session:
        s = Session(id=session_id, user_id=user_id, expires_at=expires_at)
        session.add(s)
        await session.flush()
        return s

    async def get_session(
        self, session: AsyncSession, *, session_id: str
    ) -> Session | None:
        stmt = sa.select(Session).where(Session.id == session_id).limit(1)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def delete_session(self, session: AsyncSession, *, session_id: str) -> int:
        stmt = sa.delete(Session).where(Session.id == session_id)
        res = await session.execute(stmt)
        await session.flush()
        return int(res.rowcount or 0)
