"""Integration tests for listing and editing stored transactions."""

from datetime import date
from uuid import UUID, uuid4

import pytest
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ledgersync.core.exceptions import InvalidCategoryError, TransactionNotFoundError
from ledgersync.models import BankAccount, User
from ledgersync.repositories.transaction import TransactionRepository
from ledgersync.schemas.internal import TransactionFilters
from ledgersync.services import TransactionQueryService, TransactionStore


@pytest.fixture
async def stored(
    db_session: AsyncSession, test_user: User, bank_account: BankAccount, seeded_taxonomy, make_transaction
) -> dict[str, UUID]:
    """Four transactions for the test user, keyed by external id."""
    txs = [
        make_transaction(id="coffee", booked="2024-01-20", merchant_name="Starbucks Paris", mcc="5814"),
        make_transaction(id="fuel", booked="2024-01-10", display="Station fuel"),
        make_transaction(id="pending", booked="2024-01-25", status="PENDING"),
        make_transaction(id="old", booked="2023-12-05"),
    ]
    result = await TransactionStore(db_session).store_batch(test_user.id, bank_account.id, txs)
    assert result.created == 4

    repo = TransactionRepository(db_session)
    ids = {}
    for tx in txs:
        ids[tx.id] = (await repo.get_by_external_id(tx.id)).id
    return ids


@pytest.fixture
async def theirs(db_session: AsyncSession, another_user: User, seeded_taxonomy, make_transaction) -> UUID:
    """One transaction owned by another user."""
    account = BankAccount(
        id=uuid4(),
        user_id=another_user.id,
        external_account_id="ext-acc-2",
        account_name="Other checking",
        account_type="CHECKING",
        institution_id="inst-2",
        credentials_id="cred-2",
        iban="DE89370400440532013000",
        balance=0,
        currency="EUR",
    )
    db_session.add(account)
    await db_session.commit()

    await TransactionStore(db_session).store_batch(
        another_user.id, account.id, [make_transaction(id="theirs", account_id="ext-acc-2")]
    )
    return (await TransactionRepository(db_session).get_by_external_id("theirs")).id


@pytest.fixture
def service(db_session: AsyncSession) -> TransactionQueryService:
    return TransactionQueryService(db_session)


def external_ids(result) -> list[str]:
    return [view.external_transaction_id for view in result.transactions]


class TestListTransactions:
    @pytest.mark.asyncio
    async def test_lists_own_rows_newest_first(self, service, test_user, stored, theirs):
        result = await service.list_transactions(test_user.id)

        assert external_ids(result) == ["pending", "coffee", "fuel", "old"]
        assert result.pagination.model_dump() == {"page": 1, "limit": 20, "total": 4, "total_pages": 1}

    @pytest.mark.asyncio
    async def test_second_page(self, service, test_user, stored):
        result = await service.list_transactions(test_user.id, page=2, limit=3)

        assert external_ids(result) == ["old"]
        assert result.pagination.model_dump() == {"page": 2, "limit": 3, "total": 4, "total_pages": 2}

    @pytest.mark.asyncio
    async def test_page_and_limit_are_clamped(self, service, test_user, stored):
        result = await service.list_transactions(test_user.id, page=0, limit=500)

        assert result.pagination.page == 1
        assert result.pagination.limit == 100
        assert len(result.transactions) == 4

    @pytest.mark.asyncio
    async def test_date_range_is_inclusive(self, service, test_user, stored):
        filters = TransactionFilters(date_from=date(2024, 1, 10), date_to=date(2024, 1, 20))

        result = await service.list_transactions(test_user.id, filters)

        assert external_ids(result) == ["coffee", "fuel"]

    @pytest.mark.asyncio
    async def test_status_filter(self, service, test_user, stored):
        result = await service.list_transactions(test_user.id, TransactionFilters(statuses=["PENDING"]))

        assert external_ids(result) == ["pending"]

    @pytest.mark.asyncio
    async def test_category_filter(self, service, test_user, stored):
        filters = TransactionFilters(main_category="Food & Dining", sub_category="Coffee")

        result = await service.list_transactions(test_user.id, filters)

        assert external_ids(result) == ["coffee"]
        assert result.transactions[0].category_source == "merchant"

    @pytest.mark.asyncio
    async def test_search_matches_merchant_case_insensitively(self, service, test_user, stored):
        result = await service.list_transactions(test_user.id, TransactionFilters(search="starbucks"))

        assert external_ids(result) == ["coffee"]

    @pytest.mark.asyncio
    async def test_needs_review_filter(self, service, test_user, stored):
        await service.update_category(test_user.id, stored["old"], "Shopping", "Online")

        flagged = await service.list_transactions(test_user.id, TransactionFilters(needs_review=True))
        clear = await service.list_transactions(test_user.id, TransactionFilters(needs_review=False))

        assert all(view.needs_review for view in flagged.transactions)
        assert not any(view.needs_review for view in clear.transactions)
        assert {"coffee", "old"} <= set(external_ids(clear))
        assert flagged.pagination.total + clear.pagination.total == 4

    @pytest.mark.asyncio
    async def test_unknown_account_lists_nothing(self, service, test_user, stored):
        result = await service.list_transactions(test_user.id, TransactionFilters(account_id=uuid4()))

        assert result.transactions == []
        assert result.pagination.total == 0
        assert result.pagination.total_pages == 0

    def test_reversed_dates_rejected(self):
        with pytest.raises(ValidationError):
            TransactionFilters(date_from=date(2024, 2, 1), date_to=date(2024, 1, 1))


class TestGetTransaction:
    @pytest.mark.asyncio
    async def test_get_own(self, service, test_user, stored):
        view = await service.get_transaction(test_user.id, stored["coffee"])

        assert view.id == stored["coffee"]
        assert view.booked_date == date(2024, 1, 20)
        assert view.amount == -1250
        assert view.merchant_name == "Starbucks Paris"

    @pytest.mark.asyncio
    async def test_another_users_transaction_is_not_found(self, service, test_user, theirs):
        with pytest.raises(TransactionNotFoundError):
            await service.get_transaction(test_user.id, theirs)

    @pytest.mark.asyncio
    async def test_unknown_id(self, service, test_user, stored):
        with pytest.raises(TransactionNotFoundError):
            await service.get_transaction(test_user.id, uuid4())


class TestUpdateCategory:
    @pytest.mark.asyncio
    async def test_sets_manual_category(self, service, db_session, test_user, stored):
        view = await service.update_category(test_user.id, stored["fuel"], "Bills & Utilities", "Energy")

        assert (view.main_category, view.sub_category) == ("Bills & Utilities", "Energy")
        assert view.category_source == "manual"
        assert view.category_confidence == 1.0
        assert view.needs_review is False

        db_session.expunge_all()
        row = await TransactionRepository(db_session).get_by_external_id("fuel")
        assert (row.main_category, row.sub_category) == ("Bills & Utilities", "Energy")
        assert row.categorized_at is not None

    @pytest.mark.asyncio
    async def test_pair_outside_taxonomy_rejected(self, service, db_session, test_user, stored):
        with pytest.raises(InvalidCategoryError):
            await service.update_category(test_user.id, stored["coffee"], "Food & Dining", "Rent")

        db_session.expunge_all()
        row = await TransactionRepository(db_session).get_by_external_id("coffee")
        assert (row.main_category, row.sub_category) == ("Food & Dining", "Coffee")

    @pytest.mark.asyncio
    async def test_another_users_transaction_is_not_found(self, service, test_user, theirs):
        with pytest.raises(TransactionNotFoundError):
            await service.update_category(test_user.id, theirs, "Food & Dining", "Coffee")


class TestDeleteTransaction:
    @pytest.mark.asyncio
    async def test_soft_delete_hides_row(self, service, db_session, test_user, bank_account, stored):
        await service.delete_transaction(test_user.id, stored["fuel"])

        with pytest.raises(TransactionNotFoundError):
            await service.get_transaction(test_user.id, stored["fuel"])
        listed = await service.list_transactions(test_user.id)
        assert external_ids(listed) == ["pending", "coffee", "old"]

        db_session.expunge_all()
        row = await TransactionRepository(db_session).get_by_external_id("fuel")
        assert row.deleted_at is not None

        status = await TransactionStore(db_session).compute_sync_status(test_user.id, bank_account.id)
        assert status.total_transactions == 3

    @pytest.mark.asyncio
    async def test_delete_twice_is_not_found(self, service, test_user, stored):
        await service.delete_transaction(test_user.id, stored["old"])

        with pytest.raises(TransactionNotFoundError):
            await service.delete_transaction(test_user.id, stored["old"])

    @pytest.mark.asyncio
    async def test_resync_keeps_deleted_row_hidden(
        self, service, db_session, test_user, bank_account, stored, make_transaction
    ):
        await service.delete_transaction(test_user.id, stored["old"])

        await TransactionStore(db_session).store_batch(
            test_user.id, bank_account.id, [make_transaction(id="old", booked="2023-12-05", display="Renamed")]
        )

        listed = await service.list_transactions(test_user.id)
        assert "old" not in external_ids(listed)

    @pytest.mark.asyncio
    async def test_another_users_transaction_is_not_found(self, service, test_user, theirs):
        with pytest.raises(TransactionNotFoundError):
            await service.delete_transaction(test_user.id, theirs)
