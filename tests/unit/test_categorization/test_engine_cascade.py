"""Tests for the cascading rule engine and its cache."""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from ledgersync.categorization import CategorizationCache, CategorizationEngine
from ledgersync.categorization.patterns import RESERVED_CATEGORIES
from ledgersync.models.category import CategoryRule, MccCategoryMapping

USER_ID = uuid4()


def rule_row(rule_type, pattern, main, sub, priority=100, user_id=USER_ID, **extra) -> CategoryRule:
    values = dict(
        id=uuid4(),
        user_id=user_id,
        rule_type=rule_type,
        pattern=pattern,
        main_category=main,
        sub_category=sub,
        confidence=Decimal("0.90"),
        priority=priority,
        is_active=True,
    )
    values.update(extra)
    return CategoryRule(**values)


def mcc_row(code, main, sub, confidence=None) -> MccCategoryMapping:
    return MccCategoryMapping(
        id=uuid4(), mcc_code=code, main_category=main, sub_category=sub, confidence=confidence, is_active=True
    )


@pytest.fixture
def engine():
    return CategorizationEngine(CategorizationCache(ttl=timedelta(minutes=5)))


async def categorize_one(engine, tx, now):
    results = await engine.categorize_batch(MagicMock(), USER_ID, [tx], now)
    return results[0]


class TestCascade:
    @pytest.mark.asyncio
    async def test_provider_category(self, engine, category_repo, make_transaction, now):
        result = await categorize_one(engine, make_transaction(pfm_name="Groceries"), now)

        assert (result.main_category, result.sub_category) == ("Food & Dining", "Groceries")
        assert result.source == "provider"
        assert result.confidence == 0.85
        assert not result.needs_review

    @pytest.mark.asyncio
    async def test_unknown_provider_label_falls_through(self, engine, category_repo, make_transaction, now):
        tx = make_transaction(pfm_name="Something new", merchant_name="Uber BV")

        result = await categorize_one(engine, tx, now)

        assert (result.main_category, result.sub_category) == ("Transportation", "Ride Share")
        assert result.source == "merchant"

    @pytest.mark.asyncio
    async def test_user_rule_beats_mcc_mapping(self, engine, category_repo, make_transaction, now):
        rule = rule_row("merchant", "starbucks", "Food & Dining", "Restaurants", priority=1)
        category_repo.get_user_rules.return_value = [rule]
        category_repo.get_mcc_mappings.return_value = [mcc_row("5814", "Food & Dining", "Fast Food")]

        result = await categorize_one(
            engine, make_transaction(merchant_name="Starbucks Paris", mcc="5814"), now
        )

        assert (result.main_category, result.sub_category) == ("Food & Dining", "Restaurants")
        assert result.source == "user"
        assert result.rule_id == rule.id
        assert result.confidence == 0.9

    @pytest.mark.asyncio
    async def test_user_rules_before_global_rules(self, engine, category_repo, make_transaction, now):
        category_repo.get_global_rules.return_value = [
            rule_row("merchant", "amazon", "Shopping", "Electronics", priority=1, user_id=None)
        ]
        category_repo.get_user_rules.return_value = [
            rule_row("merchant", "amazon", "Shopping", "Online", priority=500)
        ]

        result = await categorize_one(engine, make_transaction(merchant_name="Amazon EU"), now)

        assert result.sub_category == "Online"

    @pytest.mark.asyncio
    async def test_global_rule_when_no_user_rule(self, engine, category_repo, make_transaction, now):
        category_repo.get_global_rules.return_value = [
            rule_row("description", "gym club", "Health & Fitness", "Fitness", user_id=None)
        ]

        result = await categorize_one(engine, make_transaction(display="GYM CLUB monthly"), now)

        assert (result.main_category, result.sub_category) == ("Health & Fitness", "Fitness")
        assert result.source == "user"

    @pytest.mark.asyncio
    async def test_lowest_priority_number_wins(self, engine, category_repo, make_transaction, now):
        category_repo.get_user_rules.return_value = [
            rule_row("merchant", "fnac", "Shopping", "Other Shopping", priority=20),
            rule_row("merchant", "fnac", "Shopping", "Electronics", priority=10),
        ]

        result = await categorize_one(engine, make_transaction(merchant_name="FNAC Paris"), now)

        assert result.sub_category == "Electronics"

    @pytest.mark.asyncio
    async def test_amount_range_rule(self, engine, category_repo, make_transaction, now):
        category_repo.get_user_rules.return_value = [
            rule_row(
                "amount_range",
                "",
                "Bills & Utilities",
                "Rent",
                amount_min=Decimal("-900"),
                amount_max=Decimal("-800"),
            )
        ]

        result = await categorize_one(engine, make_transaction(unscaled="-85000"), now)

        assert result.sub_category == "Rent"

    @pytest.mark.asyncio
    async def test_mcc_mapping(self, engine, category_repo, make_transaction, now):
        category_repo.get_mcc_mappings.return_value = [mcc_row("5411", "Food & Dining", "Groceries")]

        result = await categorize_one(engine, make_transaction(mcc="5411"), now)

        assert (result.main_category, result.sub_category) == ("Food & Dining", "Groceries")
        assert result.source == "mcc"
        assert result.confidence == 0.8

    @pytest.mark.asyncio
    async def test_mcc_mapping_confidence_from_row(self, engine, category_repo, make_transaction, now):
        category_repo.get_mcc_mappings.return_value = [
            mcc_row("5411", "Food & Dining", "Groceries", confidence=Decimal("0.65"))
        ]

        result = await categorize_one(engine, make_transaction(mcc="5411"), now)

        assert result.confidence == 0.65

    @pytest.mark.asyncio
    async def test_merchant_pattern(self, engine, category_repo, make_transaction, now):
        result = await categorize_one(engine, make_transaction(merchant_name="NETFLIX.COM"), now)

        assert (result.main_category, result.sub_category) == ("Entertainment", "Streaming")
        assert result.source == "merchant"
        assert result.confidence == 0.95

    @pytest.mark.asyncio
    async def test_description_pattern(self, engine, category_repo, make_transaction, now):
        tx = make_transaction(unscaled="250000", display="SALARY JANUARY")

        result = await categorize_one(engine, tx, now)

        assert (result.main_category, result.sub_category) == ("Income", "Salary")
        assert result.source == "description"

    @pytest.mark.asyncio
    async def test_large_income_heuristic(self, engine, category_repo, make_transaction, now):
        result = await categorize_one(engine, make_transaction(unscaled="150000", display="Incoming"), now)

        assert (result.main_category, result.sub_category) == ("Income", "Other Income")
        assert result.source == "amount"
        assert result.confidence == 0.7
        assert result.needs_review

    @pytest.mark.asyncio
    async def test_small_fee_heuristic(self, engine, category_repo, make_transaction, now):
        result = await categorize_one(engine, make_transaction(unscaled="-500"), now)

        assert (result.main_category, result.sub_category) == ("Banking", "Fees")
        assert result.source == "amount"
        assert result.needs_review

    @pytest.mark.asyncio
    async def test_default_by_sign(self, engine, category_repo, make_transaction, now):
        debit = await categorize_one(engine, make_transaction(unscaled="-1250"), now)
        credit = await categorize_one(engine, make_transaction(unscaled="2000"), now)

        assert (debit.main_category, debit.sub_category) == ("Other", "Uncategorized")
        assert (credit.main_category, credit.sub_category) == ("Income", "Other Income")
        assert debit.source == credit.source == "default"
        assert debit.confidence == 0.1
        assert debit.needs_review and credit.needs_review

    @pytest.mark.asyncio
    async def test_invalid_pair_falls_back(self, engine, category_repo, make_transaction, now):
        category_repo.get_user_rules.return_value = [
            rule_row("merchant", "bakery", "Food & Dining", "Snacks", priority=1)
        ]

        result = await categorize_one(engine, make_transaction(merchant_name="Bakery Paul"), now)

        assert (result.main_category, result.sub_category) == ("Other", "Miscellaneous")
        assert result.source == "default"
        assert result.confidence == 0.1
        assert result.needs_review

    @pytest.mark.asyncio
    async def test_results_always_in_taxonomy(self, engine, category_repo, make_transaction, taxonomy, now):
        category_repo.get_mcc_mappings.return_value = [mcc_row("9999", "Travel", "Flights")]
        txs = [
            make_transaction(id="a", pfm_name="Transfer"),
            make_transaction(id="b", mcc="9999"),
            make_transaction(id="c", merchant_name="Shell Station"),
            make_transaction(id="d", display="ATM withdrawal"),
            make_transaction(id="e", unscaled="-300"),
            make_transaction(id="f", unscaled="99999999"),
            make_transaction(id="g"),
        ]

        results = await engine.categorize_batch(MagicMock(), USER_ID, txs, now)

        assert len(results) == len(txs)
        for result in results:
            pair = (result.main_category, result.sub_category)
            assert pair in RESERVED_CATEGORIES or result.sub_category in taxonomy[result.main_category]


class TestCache:
    @pytest.mark.asyncio
    async def test_reload_only_after_ttl(self, engine, category_repo, make_transaction, now):
        db = MagicMock()
        await engine.categorize_batch(db, USER_ID, [make_transaction()], now)
        await engine.categorize_batch(db, USER_ID, [make_transaction()], now + timedelta(minutes=4))

        assert category_repo.get_global_rules.await_count == 1
        assert category_repo.get_user_rules.await_count == 1

        await engine.categorize_batch(db, USER_ID, [make_transaction()], now + timedelta(minutes=5))

        assert category_repo.get_global_rules.await_count == 2
        assert category_repo.get_user_rules.await_count == 2

    @pytest.mark.asyncio
    async def test_user_rules_cached_per_user(self, engine, category_repo, make_transaction, now):
        db = MagicMock()
        await engine.categorize_batch(db, USER_ID, [make_transaction()], now)
        await engine.categorize_batch(db, uuid4(), [make_transaction()], now)

        assert category_repo.get_global_rules.await_count == 1
        assert category_repo.get_user_rules.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_user(self, engine, category_repo, make_transaction, now):
        db = MagicMock()
        await engine.categorize_batch(db, USER_ID, [make_transaction()], now)
        category_repo.get_user_rules.return_value = [
            rule_row("merchant", "lidl", "Food & Dining", "Groceries", priority=1)
        ]

        stale = await categorize_one(engine, make_transaction(merchant_name="LIDL"), now)
        engine.cache.invalidate(USER_ID)
        fresh = await categorize_one(engine, make_transaction(merchant_name="LIDL"), now)

        assert stale.source == "default"
        assert fresh.source == "user"
        assert category_repo.get_global_rules.await_count == 1

    @pytest.mark.asyncio
    async def test_taxonomy_view(self, engine, category_repo, taxonomy, now):
        await engine.cache.refresh_if_stale(MagicMock(), now=now)

        assert engine.cache.taxonomy() == taxonomy
        assert engine.cache.is_valid_pair("To Classify", "Needs Review")
        assert not engine.cache.is_valid_pair("Income", "Groceries")
