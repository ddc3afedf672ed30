from __future__ import annotations

from dataclasses import dataclass

import sqlalchemy as sa  # type: ignore[import-not-found]
from sqlalchemy.ext.asyncio import AsyncSession  # type: ignore[import-not-found]

from tally.auth.models import Base

# Imported for its side effect: registers the counters table on Base.metadata.
from tally.counter import models as _counter_models  # noqa: F401

REQUIRED_TABLES = ("counters", "sessions", "users")


@dataclass(frozen=True)
class AdminRepository:
    async def list_app_tables(self, session: AsyncSession) -> list[str]:
        stmt = sa.text(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = 'public' AND table_name IN :names "
            "ORDER BY table_name"
        ).bindparams(sa.bindparam("names", expanding=True))
        res = await session.execute(stmt, {"names": list(REQUIRED_TABLES)})
        return [str(row[0]) for row in res.all()]

    async def create_missing_tables(self, session: AsyncSession) -> None:
        await session.run_sync(
            lambda sync_session: Base.metadata.create_all(
                bind=sync_session.connection(), checkfirst=True
            )
        )
