"""Bank account repository: identity lookups and sync bookkeeping."""
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ledgersync.models.bank_account import BankAccount
from ledgersync.models.base import utcnow
from ledgersync.repositories.base import BaseRepository


class BankAccountRepository(BaseRepository[BankAccount]):
    """Repository for BankAccount with the lookups used to detect duplicates."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, BankAccount)

    def _live(self, user_id: UUID):
        return select(BankAccount).where(
            BankAccount.user_id == user_id, BankAccount.deleted_at.is_(None)
        )

    async def get_for_user(self, user_id: UUID, account_id: UUID) -> BankAccount | None:
        """Get an account only if it belongs to the user."""
        result = await self.db.execute(self._live(user_id).where(BankAccount.id == account_id))
        return result.scalar_one_or_none()

    async def list_by_user(self, user_id: UUID) -> list[BankAccount]:
        result = await self.db.execute(self._live(user_id).order_by(BankAccount.created_at))
        return list(result.scalars().all())

    async def count_by_user(self, user_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(BankAccount.id)).where(
                BankAccount.user_id == user_id, BankAccount.deleted_at.is_(None)
            )
        )
        return result.scalar_one()

    async def list_by_credentials(self, user_id: UUID, credentials_id: str) -> list[BankAccount]:
        result = await self.db.execute(
            self._live(user_id)
            .where(BankAccount.credentials_id == credentials_id)
            .order_by(BankAccount.created_at)
        )
        return list(result.scalars().all())

    async def find_by_external_id(self, user_id: UUID, external_account_id: str) -> BankAccount | None:
        result = await self.db.execute(
            self._live(user_id).where(BankAccount.external_account_id == external_account_id)
        )
        return result.scalar_one_or_none()

    async def find_by_institution_and_iban(
        self, user_id: UUID, institution_id: str, iban: str
    ) -> BankAccount | None:
        result = await self.db.execute(
            self._live(user_id)
            .where(BankAccount.institution_id == institution_id, BankAccount.iban == iban)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_by_credentials_and_external_id(
        self, user_id: UUID, credentials_id: str, external_account_id: str
    ) -> BankAccount | None:
        result = await self.db.execute(
            self._live(user_id).where(
                BankAccount.credentials_id == credentials_id,
                BankAccount.external_account_id == external_account_id,
            )
        )
        return result.scalar_one_or_none()

    async def _update_fields(self, account_id: UUID, **values) -> None:
        values.setdefault("updated_at", utcnow())
        await self.db.execute(
            update(BankAccount).where(BankAccount.id == account_id).values(**values)
        )
        await self.db.commit()

    async def touch_last_refreshed(self, account_id: UUID, at: datetime | None = None) -> None:
        await self._update_fields(account_id, last_refreshed_at=at or utcnow())

    async def touch_incremental_sync(
        self, account_id: UUID, kind: str, at: datetime | None = None
    ) -> None:
        """Record when and how (full or incremental) the account was last caught up.

        A full sync also counts as a refresh of the whole window.
        """
        at = at or utcnow()
        values: dict = {"last_incremental_sync_at": at, "last_sync_kind": kind, "updated_at": at}
        if kind == "full":
            values["last_refreshed_at"] = at
        await self._update_fields(account_id, **values)

    async def set_consent_status(
        self, account_id: UUID, status: str, expires_at: datetime | None = None
    ) -> None:
        values: dict = {"consent_status": status}
        if expires_at is not None:
            values["consent_expires_at"] = expires_at
        await self._update_fields(account_id, **values)
