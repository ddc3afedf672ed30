from __future__ import annotations

import hmac
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession  # type: ignore[import-not-found]

from tally.admin.repository import REQUIRED_TABLES, AdminRepository
from tally.core.settings import Settings


@dataclass(frozen=True)
class MigrationStatus:
    migrated: bool
    tables: list[str]

    @property
    def message(self) -> str:
        if self.migrated:
            return "All required tables exist"
        return "Some tables are missing. Run POST /api/admin/migrate to create them."


@dataclass
class AdminService:
    repo: AdminRepository
    migration_secret: str | None = None

    @classmethod
    def create(cls, settings: Settings) -> "AdminService":
        return cls(repo=AdminRepository(), migration_secret=settings.MIGRATION_SECRET)

    def is_authorized(self, authorization: str | None) -> bool:
        """No secret configured means the endpoint is open."""
        if not self.migration_secret:
            return True
        expected = f"Bearer {self.migration_secret}"
        return hmac.compare_digest((authorization or "").encode(), expected.encode())

    async def status(self, session: AsyncSession) -> MigrationStatus:
        tables = await self.repo.list_app_tables(session)
        return MigrationStatus(
            migrated=set(REQUIRED_TABLES) <= set(tables), tables=tables
        )

    async def migrate(self, session: AsyncSession) -> None:
        await self.repo.create_missing_tables(session)
        await session.commit()
