"""Batched, idempotent storage of provider transactions.

Transactions are split into fixed-size batches. Each batch is classified,
mapped to rows and written with one bulk upsert inside its own database
transaction. A failing batch is rolled back and reported; the remaining
batches still run.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from ledgersync.categorization.ai_classifier import AIClassifier
from ledgersync.categorization.engine import CategorizationEngine
from ledgersync.config import settings
from ledgersync.core.exceptions import AccountNotFoundError, StorageBatchError
from ledgersync.models.bank_account import BankAccount
from ledgersync.models.base import utcnow
from ledgersync.models.transaction import (
    DESCRIPTION_MAX,
    FI_TYPE_CODE_MAX,
    IDENTIFIER_MAX,
    MCC_MAX,
    MERCHANT_NAME_MAX,
    REFERENCE_MAX,
    TRANSACTION_TYPE_MAX,
)
from ledgersync.repositories.bank_account import BankAccountRepository
from ledgersync.repositories.transaction import TransactionRepository
from ledgersync.schemas.aggregator import ProviderTransaction
from ledgersync.schemas.internal import CategorizationResult, StoreResult, SyncKind, SyncStatus

logger = logging.getLogger(__name__)

Classifier = Callable[[list[ProviderTransaction]], Awaitable[list[CategorizationResult]]]


def _truncate(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit]


def to_row(
    user_id: UUID,
    account_id: UUID,
    transaction: ProviderTransaction,
    categorization: CategorizationResult,
    now: datetime,
) -> dict:
    """Map a provider transaction and its category to a ``transactions`` row."""
    pfm = transaction.categories.pfm if transaction.categories else None
    types = transaction.types
    return {
        "id": uuid4(),
        "external_transaction_id": transaction.id,
        "user_id": user_id,
        "account_id": account_id,
        "external_account_id": _truncate(transaction.account_id, IDENTIFIER_MAX),
        "amount": transaction.amount.value.unscaled_value,
        "amount_scale": transaction.amount.value.scale,
        "currency_code": transaction.amount.currency_code,
        "booked_date": transaction.dates.booked,
        "value_date": transaction.dates.value or transaction.dates.booked,
        "transaction_date": transaction.dates.transaction,
        "status": transaction.status,
        "original_status": transaction.status,
        "status_last_updated_at": now,
        "display_description": _truncate(transaction.descriptions.display or "", DESCRIPTION_MAX),
        "original_description": _truncate(transaction.descriptions.original or "", DESCRIPTION_MAX),
        "provider_transaction_id": _truncate(
            transaction.identifiers.provider_transaction_id if transaction.identifiers else None,
            IDENTIFIER_MAX,
        ),
        "merchant_name": _truncate(transaction.merchant_name, MERCHANT_NAME_MAX),
        "merchant_category_code": _truncate(transaction.merchant_category_code, MCC_MAX),
        "provider_category_id": _truncate(pfm.id if pfm else None, IDENTIFIER_MAX),
        "provider_category_name": _truncate(pfm.name if pfm else None, IDENTIFIER_MAX),
        "transaction_type": _truncate(types.type if types else None, TRANSACTION_TYPE_MAX),
        "fi_type_code": _truncate(
            types.financial_institution_type_code if types else None, FI_TYPE_CODE_MAX
        ),
        "reference": _truncate(transaction.reference, REFERENCE_MAX),
        "main_category": categorization.main_category,
        "sub_category": categorization.sub_category,
        "category_source": categorization.source,
        "category_confidence": categorization.confidence,
        "needs_review": categorization.needs_review,
        "categorized_at": now,
        "created_at": now,
        "updated_at": now,
    }


class TransactionStore:
    """Upsert store for one database session.

    Args:
        db: Session used for every batch; committed once per batch
        engine: Rule engine used by ``store_batch``
        ai_classifier: External classifier used by ``store_with_ai``
        batch_size: Transactions per database transaction
    """

    def __init__(
        self,
        db: AsyncSession,
        engine: CategorizationEngine | None = None,
        ai_classifier: AIClassifier | None = None,
        batch_size: int | None = None,
    ):
        self.db = db
        self.engine = engine or CategorizationEngine()
        self.ai_classifier = ai_classifier
        self.batch_size = batch_size or settings.storage_batch_size
        self.transactions = TransactionRepository(db)
        self.accounts = BankAccountRepository(db)

    async def verify_account(self, user_id: UUID, account_id: UUID) -> BankAccount:
        """Return the account, or raise if it is missing or not the user's.

        Raises:
            AccountNotFoundError: If no live account matches both IDs
        """
        account = await self.accounts.get_for_user(user_id, account_id)
        if account is None:
            raise AccountNotFoundError(account_id, user_id)
        return account

    async def store_batch(
        self, user_id: UUID, account_id: UUID, transactions: list[ProviderTransaction]
    ) -> StoreResult:
        """Classify with the rule engine and upsert in batches."""

        async def classify(batch: list[ProviderTransaction]) -> list[CategorizationResult]:
            return await self.engine.categorize_batch(self.db, user_id, batch)

        return await self._store(user_id, account_id, transactions, classify)

    async def store_with_ai(
        self, user_id: UUID, account_id: UUID, transactions: list[ProviderTransaction]
    ) -> StoreResult:
        """Classify with the external model and upsert in batches.

        The taxonomy sent to the model is the one held by the rule engine's
        cache.
        """
        if self.ai_classifier is None:
            self.ai_classifier = AIClassifier()
        cache = self.engine.cache

        async def classify(batch: list[ProviderTransaction]) -> list[CategorizationResult]:
            await cache.refresh_if_stale(self.db, user_id)
            return await self.ai_classifier.classify(batch, cache.taxonomy())

        return await self._store(user_id, account_id, transactions, classify)

    async def _store(
        self,
        user_id: UUID,
        account_id: UUID,
        transactions: list[ProviderTransaction],
        classify: Classifier,
    ) -> StoreResult:
        total = StoreResult()
        for start in range(0, len(transactions), self.batch_size):
            batch = transactions[start : start + self.batch_size]
            total = total.merge(await self._store_one(user_id, account_id, batch, start, classify))

        logger.info(
            "Stored transactions",
            extra={
                "account_id": str(account_id),
                "created_count": total.created,
                "updated_count": total.updated,
                "failed_batches": len(total.errors),
            },
        )
        return total

    async def _store_one(
        self,
        user_id: UUID,
        account_id: UUID,
        batch: list[ProviderTransaction],
        start: int,
        classify: Classifier,
    ) -> StoreResult:
        end = start + len(batch)
        try:
            categorizations = await classify(batch)
            now = utcnow()
            rows_by_id: dict[str, dict] = {}
            for transaction, categorization in zip(batch, categorizations, strict=True):
                rows_by_id[transaction.id] = to_row(user_id, account_id, transaction, categorization, now)

            written = await self.transactions.upsert_many(list(rows_by_id.values()))
            await self.db.commit()
        except Exception as exc:
            await self.db.rollback()
            error = StorageBatchError(start, end, exc)
            logger.error(
                "Failed to store transaction batch",
                extra={"account_id": str(account_id), "start": start, "end": end, "error": str(exc)},
            )
            return StoreResult(errors=[str(error)])

        created = sum(1 for _, is_new in written if is_new)
        return StoreResult(created=created, updated=len(written) - created)

    async def touch_last_refreshed(self, account_id: UUID) -> None:
        await self.accounts.touch_last_refreshed(account_id)

    async def touch_incremental_sync(self, account_id: UUID, kind: SyncKind) -> None:
        await self.accounts.touch_incremental_sync(account_id, kind)

    async def set_consent_status(
        self, account_id: UUID, status: str, expires_at: datetime | None = None
    ) -> None:
        await self.accounts.set_consent_status(account_id, status, expires_at)

    async def compute_sync_status(self, user_id: UUID, account_id: UUID) -> SyncStatus:
        return await self.transactions.compute_sync_status(user_id, account_id)
