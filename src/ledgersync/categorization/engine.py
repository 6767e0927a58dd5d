"""Cascading rule-based transaction classifier.

Evaluation order, first match wins:

1. Provider category label, via PROVIDER_CATEGORY_MAP
2. Stored rules: the user's own first, then global rules, by priority
3. Merchant category code mapping
4. Built-in merchant name patterns
5. Built-in description patterns
6. Amount heuristics (large income, small fees)
7. Default by sign

Every pair is checked against the taxonomy before it is returned. Pairs
that are not in it become Other/Miscellaneous flagged for review.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ledgersync.categorization.cache import CategorizationCache, shared_cache
from ledgersync.categorization.patterns import (
    DESCRIPTION_PATTERNS,
    FALLBACK_CATEGORY,
    FALLBACK_CONFIDENCE,
    LARGE_INCOME_THRESHOLD,
    MERCHANT_PATTERNS,
    PROVIDER_CATEGORY_MAP,
    PROVIDER_CONFIDENCE,
    SMALL_FEE_THRESHOLD,
    match_keywords,
)
from ledgersync.categorization.rules import Rule
from ledgersync.schemas.aggregator import ProviderTransaction
from ledgersync.schemas.internal import CategorizationResult, CategorySource

logger = logging.getLogger(__name__)


class CategorizationEngine:
    """Classify provider transactions with stored and built-in rules.

    Engines share the process-wide ``shared_cache`` unless a cache is
    passed in. ``categorize`` itself never touches the database; call
    ``categorize_batch`` or ``cache.refresh_if_stale`` first.
    """

    def __init__(self, cache: CategorizationCache | None = None):
        self.cache = cache or shared_cache

    async def categorize_batch(
        self,
        db: AsyncSession,
        user_id: UUID,
        transactions: list[ProviderTransaction],
        now: datetime | None = None,
    ) -> list[CategorizationResult]:
        """Refresh the cache if needed, then classify each transaction in order."""
        await self.cache.refresh_if_stale(db, user_id, now)
        return [self.categorize(user_id, transaction) for transaction in transactions]

    def categorize(self, user_id: UUID, transaction: ProviderTransaction) -> CategorizationResult:
        provider_label = transaction.provider_category_name
        if provider_label and provider_label in PROVIDER_CATEGORY_MAP:
            main, sub = PROVIDER_CATEGORY_MAP[provider_label]
            return self._validated(main, sub, "provider", PROVIDER_CONFIDENCE)

        rule = self._first_matching_rule(user_id, transaction)
        if rule is not None:
            return self._validated(
                rule.main_category, rule.sub_category, "user", rule.confidence, rule_id=rule.id
            )

        mcc_rule = self.cache.mcc_rule(transaction.merchant_category_code)
        if mcc_rule is not None:
            return self._validated(
                mcc_rule.main_category, mcc_rule.sub_category, "mcc", mcc_rule.confidence
            )

        merchant_pattern = match_keywords(MERCHANT_PATTERNS, transaction.merchant_name)
        if merchant_pattern is not None:
            return self._validated(
                merchant_pattern.main_category,
                merchant_pattern.sub_category,
                "merchant",
                merchant_pattern.confidence,
            )

        description_pattern = match_keywords(DESCRIPTION_PATTERNS, transaction.description)
        if description_pattern is not None:
            return self._validated(
                description_pattern.main_category,
                description_pattern.sub_category,
                "description",
                description_pattern.confidence,
            )

        amount = transaction.decimal_amount()
        heuristic = self._amount_heuristic(amount)
        if heuristic is not None:
            return heuristic

        return self._default(amount)

    def _first_matching_rule(self, user_id: UUID, transaction: ProviderTransaction) -> Rule | None:
        for rules in (self.cache.user_rules(user_id), self.cache.global_rules()):
            for rule in rules:
                if rule.matches(transaction):
                    return rule
        return None

    def _amount_heuristic(self, amount: Decimal) -> CategorizationResult | None:
        if amount > LARGE_INCOME_THRESHOLD:
            return self._validated("Income", "Other Income", "amount", 0.7, needs_review=True)
        if amount < 0 and abs(amount) < SMALL_FEE_THRESHOLD:
            return self._validated("Banking", "Fees", "amount", 0.6, needs_review=True)
        return None

    def _default(self, amount: Decimal) -> CategorizationResult:
        if amount > 0:
            main, sub = "Income", "Other Income"
        else:
            main, sub = "Other", "Uncategorized"
        return self._validated(main, sub, "default", FALLBACK_CONFIDENCE, needs_review=True)

    def _validated(
        self,
        main_category: str,
        sub_category: str,
        source: CategorySource,
        confidence: float,
        needs_review: bool = False,
        rule_id: UUID | None = None,
    ) -> CategorizationResult:
        if self.cache.is_valid_pair(main_category, sub_category):
            return CategorizationResult(
                main_category=main_category,
                sub_category=sub_category,
                source=source,
                confidence=confidence,
                needs_review=needs_review,
                rule_id=rule_id,
            )

        logger.warning(
            "Invalid category combination %s:%s from source %s",
            main_category,
            sub_category,
            source,
        )
        return CategorizationResult(
            main_category=FALLBACK_CATEGORY[0],
            sub_category=FALLBACK_CATEGORY[1],
            source="default",
            confidence=FALLBACK_CONFIDENCE,
            needs_review=True,
        )
