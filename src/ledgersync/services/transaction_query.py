"""Read and edit access to stored transactions.

Listing follows the usual page/limit convention: pages are 1-indexed and
``limit`` is clamped into 1..100. Every lookup is scoped to the user and
ignores soft-deleted rows.
"""

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ledgersync.categorization.cache import CategorizationCache, shared_cache
from ledgersync.core.exceptions import InvalidCategoryError, TransactionNotFoundError
from ledgersync.models.base import utcnow
from ledgersync.models.transaction import Transaction
from ledgersync.repositories.transaction import TransactionRepository
from ledgersync.schemas.internal import (
    PaginationMeta,
    TransactionFilters,
    TransactionListResult,
    TransactionView,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MANUAL_CONFIDENCE = 1.0


class TransactionQueryService:
    """List, fetch, recategorize and delete a user's stored transactions."""

    def __init__(self, db: AsyncSession, cache: CategorizationCache | None = None):
        self.db = db
        self.transactions = TransactionRepository(db)
        self.cache = cache or shared_cache

    async def list_transactions(
        self,
        user_id: UUID,
        filters: TransactionFilters | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> TransactionListResult:
        """
        List transactions with filters and pagination, newest booked first.

        Args:
            user_id: Owner of the transactions
            filters: Optional filters; None lists everything
            page: Page number (1-indexed, values below 1 read as 1)
            limit: Items per page (clamped into 1..100)

        Returns:
            The page of transactions and its pagination metadata
        """
        page = max(page, 1)
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        rows, total = await self.transactions.list_filtered(
            user_id, filters or TransactionFilters(), offset=(page - 1) * limit, limit=limit
        )

        total_pages = (total + limit - 1) // limit if total > 0 else 0
        return TransactionListResult(
            transactions=[TransactionView.model_validate(row) for row in rows],
            pagination=PaginationMeta(page=page, limit=limit, total=total, total_pages=total_pages),
        )

    async def get_transaction(self, user_id: UUID, transaction_id: UUID) -> TransactionView:
        return TransactionView.model_validate(await self._get_owned(user_id, transaction_id))

    async def update_category(
        self, user_id: UUID, transaction_id: UUID, main_category: str, sub_category: str
    ) -> TransactionView:
        """
        Set a category chosen by the user.

        The pair must exist in the taxonomy. The row is marked as a manual,
        fully confident category that no longer needs review.

        Raises:
            TransactionNotFoundError: Missing, deleted, or another user's row
            InvalidCategoryError: The pair is not in the taxonomy
        """
        transaction = await self._get_owned(user_id, transaction_id)

        await self.cache.refresh_if_stale(self.db, user_id)
        if not self.cache.is_valid_pair(main_category, sub_category):
            raise InvalidCategoryError(main_category, sub_category)

        transaction.main_category = main_category
        transaction.sub_category = sub_category
        transaction.category_source = "manual"
        transaction.category_confidence = MANUAL_CONFIDENCE
        transaction.needs_review = False
        transaction.categorized_at = utcnow()
        await self.db.commit()

        logger.info(
            "Transaction category updated",
            extra={
                "transaction_id": str(transaction.id),
                "main_category": main_category,
                "sub_category": sub_category,
            },
        )
        return TransactionView.model_validate(transaction)

    async def delete_transaction(self, user_id: UUID, transaction_id: UUID) -> None:
        """Soft-delete a transaction. It disappears from listings and sync status."""
        transaction = await self._get_owned(user_id, transaction_id)
        await self.transactions.soft_delete(transaction)

        logger.info("Transaction deleted", extra={"transaction_id": str(transaction.id)})

    async def _get_owned(self, user_id: UUID, transaction_id: UUID) -> Transaction:
        transaction = await self.transactions.get_for_user(user_id, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id, user_id)
        return transaction
