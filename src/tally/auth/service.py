from __future__ import annotations

import datetime as dt
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.exc import IntegrityError  # type: ignore[import-not-found]
from sqlalchemy.ext.asyncio import AsyncSession  # type: ignore[import-not-found]

from tally.auth.crypto import (
    hash_password,
    new_session_token,
    session_id_for_token,
    verify_password,
)
from tally.auth.exceptions import (
    CREDENTIALS_REQUIRED,
    INVALID_CREDENTIALS,
    USERNAME_TAKEN,
    AuthConflictException,
    AuthServiceException,
    AuthUnauthorizedException,
)
from tally.auth.models import User
from tally.auth.repository import AuthRepository
from tally.commons.ids import new_id
from tally.commons.logging import logger
from tally.core.settings import Settings


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def _aware(value: dt.datetime) -> dt.datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=dt.UTC)


@dataclass(frozen=True)
class SessionStatus:
    user_id: UUID | None
    expired: bool = False


@dataclass
class AuthService:
    repo: AuthRepository
    session_ttl: dt.timedelta = dt.timedelta(days=7)
    password_iterations: int = 210_000
    username_min_length: int = 3
    password_min_length: int = 6
    clock: Callable[[], dt.datetime] = field(default=_utcnow)

    @classmethod
    def create(cls, settings: Settings, repo: AuthRepository | None = None) -> "AuthService":
        return cls(
            repo=repo or AuthRepository(),
            session_ttl=dt.timedelta(days=settings.AUTH_SESSION_TTL_DAYS),
            password_iterations=settings.AUTH_PASSWORD_ITERATIONS,
            username_min_length=settings.AUTH_USERNAME_MIN_LENGTH,
            password_min_length=settings.AUTH_PASSWORD_MIN_LENGTH,
        )

    async def register(
        self, session: AsyncSession, *, username: str, password: str
    ) -> tuple[User, str]:
        if not username or not password:
            raise AuthServiceException(CREDENTIALS_REQUIRED)
        if len(username) < self.username_min_length:
            raise AuthServiceException(
                f"Username must be at least {self.username_min_length} characters"
            )
        if len(password) < self.password_min_length:
            raise AuthServiceException(
                f"Password must be at least {self.password_min_length} characters"
            )

        if await self.repo.get_user_by_username(session, username=username) is not None:
            raise AuthConflictException(USERNAME_TAKEN)

        pw_hash = hash_password(password, iterations=self.password_iterations)
        try:
            user = await self.repo.insert_user(
                session, user_id=new_id(), username=username, password_hash=pw_hash
            )
        except IntegrityError as exc:
            # Lost a race with a concurrent registration of the same name.
            await session.rollback()
            raise AuthConflictException(USERNAME_TAKEN) from exc

        token = await self._create_session(session, user_id=user.id)
        await session.commit()
        return user, token

    async def login(
        self, session: AsyncSession, *, username: str, password: str
    ) -> tuple[User, str]:
        if not username or not password:
            raise AuthServiceException(CREDENTIALS_REQUIRED)

        user = await self.repo.get_user_by_username(session, username=username)
        if user is None or not verify_password(password, user.password_hash):
            raise AuthUnauthorizedException(INVALID_CREDENTIALS)

        token = await self._create_session(session, user_id=user.id)
        await session.commit()
        return user, token

    async def logout(self, session: AsyncSession, *, token: str) -> None:
        await self.repo.delete_session(session, session_id=session_id_for_token(token))
        await session.commit()

    async def check_session(self, session: AsyncSession, *, token: str) -> SessionStatus:
        session_id = session_id_for_token(token)
        s = await self.repo.get_session(session, session_id=session_id)
        if s is None:
            return SessionStatus(user_id=None)
        if _aware(s.expires_at) < self.clock():
            await self.repo.delete_session(session, session_id=session_id)
            await session.commit()
            logger.info("Expired session removed")
            return SessionStatus(user_id=None, expired=True)
        return SessionStatus(user_id=s.user_id)

    async def validate_session(self, session: AsyncSession, *, token: str) -> UUID | None:
        """Return the user id behind a session token, or None when there is no identity."""
        return (await self.check_session(session, token=token)).user_id

    async def get_user(self, session: AsyncSession, *, user_id: UUID) -> User | None:
        return await self.repo.get_user_by_id(session, user_id=user_id)

    async def _create_session(self, session: AsyncSession, *, user_id: UUID) -> str:
        token = new_session_token()
        await self.repo.insert_session(
            session,
            session_id=session_id_for_token(token),
            user_id=user_id,
            expires_at=self.clock() + self.session_ttl,
        )
        return token
