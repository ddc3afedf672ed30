from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

import sqlalchemy as sa  # type: ignore[import-not-found]
from sqlalchemy.dialects.postgresql import insert as pg_insert  # type: ignore[import-not-found]
from sqlalchemy.ext.asyncio import AsyncSession  # type: ignore[import-not-found]

from tally.commons.ids import new_id
from tally.counter.models import Counter


@dataclass(frozen=True)
class CounterRepository:
    async def get_or_create(self, session: AsyncSession, *, user_id: UUID) -> int:
        stmt = (
            pg_insert(Counter)
            .values(id=new_id(), user_id=user_id, value=0)
            .on_conflict_do_nothing(index_elements=[Counter.user_id])
        )
        await session.execute(stmt)
        res = await session.execute(
            sa.select(Counter.value).where(Counter.user_id == user_id)
        )
        return int(res.scalar_one())

    async def add(self, session: AsyncSession, *, user_id: UUID, delta: int) -> int:
        """Apply `delta` in one statement; creates the counter at `delta` if missing."""
        stmt = (
            pg_insert(Counter)
            .values(id=new_id(), user_id=user_id, value=delta)
            .on_conflict_do_update(
                index_elements=[Counter.user_id],
                set_={"value": Counter.value + delta, "updated_at": sa.func.now()},
            )
            .returning(Counter.value)
        )
        res = await session.execute(stmt)
        return int(res.scalar_one())
