from __future__ import annotations

import sqlalchemy as sa  # type: ignore[import-not-found]

from tally.core.db import DatabaseManager


async def check_db(database: DatabaseManager) -> tuple[bool, str | None]:
    try:
        await database.initialize()
        async with database.session() as session:
            await session.execute(sa.text("SELECT 1"))
        return True, None
    except Exception as exc:
        return False, str(exc)
