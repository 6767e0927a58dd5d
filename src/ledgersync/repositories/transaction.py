"""Transaction repository: bulk upsert, filtered listing and sync aggregates."""
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from ledgersync.models.bank_account import BankAccount
from ledgersync.models.base import utcnow
from ledgersync.models.transaction import Transaction
from ledgersync.repositories.base import BaseRepository
from ledgersync.schemas.internal import SyncStatus, TransactionFilters

# Columns overwritten on conflict. A conflicting row is only rewritten when
# at least one of them differs from the incoming value.
MUTABLE_COLUMNS = (
    "status",
    "amount",
    "amount_scale",
    "currency_code",
    "booked_date",
    "value_date",
    "transaction_date",
    "display_description",
    "original_description",
    "provider_transaction_id",
    "merchant_name",
    "merchant_category_code",
    "provider_category_id",
    "provider_category_name",
    "transaction_type",
    "fi_type_code",
    "reference",
    "main_category",
    "sub_category",
    "category_source",
    "category_confidence",
    "needs_review",
)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class TransactionRepository(BaseRepository[Transaction]):
    """Repository for Transaction model with upsert and aggregate queries."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Transaction)

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        try:
            return _INSERT_BY_DIALECT[dialect](Transaction)
        except KeyError:
            raise NotImplementedError(f"Upsert is not supported on dialect {dialect!r}") from None

    async def upsert_many(self, rows: Sequence[dict[str, Any]]) -> list[tuple[UUID, bool]]:
        """Insert rows or update them on ``external_transaction_id`` conflict.

        Every row must carry the same keys, including ``created_at`` and
        ``updated_at`` set to the same timestamp. A conflicting row whose
        mutable columns are all unchanged is left untouched and is not
        returned.

        Returns:
            (id, created) for each written row. ``created`` is True when the
            row's created_at equals its updated_at.
        """
        if not rows:
            return []

        table = Transaction.__table__
        stmt = self._insert().values(list(rows))
        excluded = stmt.excluded

        changed = or_(*(table.c[name].is_distinct_from(excluded[name]) for name in MUTABLE_COLUMNS))
        set_ = {name: excluded[name] for name in MUTABLE_COLUMNS}
        set_["status_last_updated_at"] = case(
            (table.c.status != excluded.status, excluded.status_last_updated_at),
            else_=table.c.status_last_updated_at,
        )
        set_["categorized_at"] = excluded.categorized_at
        set_["updated_at"] = excluded.updated_at

        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.external_transaction_id],
            set_=set_,
            where=changed,
        ).returning(table.c.id, table.c.created_at, table.c.updated_at)

        result = await self.db.execute(stmt)
        return [(row.id, row.created_at == row.updated_at) for row in result.all()]

    async def get_by_external_id(self, external_transaction_id: str) -> Transaction | None:
        result = await self.db.execute(
            select(Transaction).where(Transaction.external_transaction_id == external_transaction_id)
        )
        return result.scalar_one_or_none()

    async def get_by_account(self, user_id: UUID, account_id: UUID) -> list[Transaction]:
        result = await self.db.execute(
            select(Transaction)
            .where(
                Transaction.user_id == user_id,
                Transaction.account_id == account_id,
                Transaction.deleted_at.is_(None),
            )
            .order_by(Transaction.booked_date.desc(), Transaction.external_transaction_id)
        )
        return list(result.scalars().all())

    async def get_for_user(self, user_id: UUID, transaction_id: UUID) -> Transaction | None:
        """Get one live transaction, only if it belongs to the user."""
        result = await self.db.execute(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.user_id == user_id,
                Transaction.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def list_filtered(
        self, user_id: UUID, filters: TransactionFilters, offset: int, limit: int
    ) -> tuple[list[Transaction], int]:
        """One page of a user's live transactions, newest booked first.

        Returns:
            (rows on the page, total rows matching the filters)
        """
        query = select(Transaction).where(
            and_(Transaction.user_id == user_id, Transaction.deleted_at.is_(None))
        )

        if filters.account_id:
            query = query.where(Transaction.account_id == filters.account_id)

        if filters.date_from:
            query = query.where(Transaction.booked_date >= filters.date_from)

        if filters.date_to:
            query = query.where(Transaction.booked_date <= filters.date_to)

        if filters.statuses:
            query = query.where(Transaction.status.in_(filters.statuses))

        if filters.main_category:
            query = query.where(Transaction.main_category == filters.main_category)

        if filters.sub_category:
            query = query.where(Transaction.sub_category == filters.sub_category)

        if filters.needs_review is not None:
            query = query.where(Transaction.needs_review == filters.needs_review)

        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.where(
                or_(
                    Transaction.merchant_name.ilike(pattern),
                    Transaction.display_description.ilike(pattern),
                )
            )

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = (
            query.order_by(Transaction.booked_date.desc(), Transaction.external_transaction_id)
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def soft_delete(self, transaction: Transaction) -> None:
        """Soft delete a transaction by setting its deleted_at timestamp."""
        transaction.deleted_at = utcnow()
        await self.db.commit()

    async def compute_sync_status(self, user_id: UUID, account_id: UUID) -> SyncStatus:
        """Count and date bounds for an account, in a single query."""
        last_refreshed = (
            select(BankAccount.last_refreshed_at)
            .where(BankAccount.id == account_id, BankAccount.user_id == user_id)
            .scalar_subquery()
        )
        result = await self.db.execute(
            select(
                func.count(Transaction.id),
                func.min(Transaction.booked_date),
                func.max(Transaction.booked_date),
                last_refreshed,
            ).where(
                Transaction.user_id == user_id,
                Transaction.account_id == account_id,
                Transaction.deleted_at.is_(None),
            )
        )
        total, oldest, newest, last_synced = result.one()
        return SyncStatus(
            last_synced=last_synced,
            total_transactions=total or 0,
            oldest_date=oldest,
            newest_date=newest,
        )
