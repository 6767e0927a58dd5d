"""Stored classification rules as a closed set of variants.

A ``CategoryRule`` row is converted once, when the cache loads it, into one
of four frozen dataclasses. Matching is then a method call on the variant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Union
from uuid import UUID

from ledgersync.categorization.patterns import DEFAULT_RULE_CONFIDENCE
from ledgersync.models.category import CategoryRule
from ledgersync.schemas.aggregator import ProviderTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _RuleBase:
    id: UUID | None
    main_category: str
    sub_category: str
    confidence: float
    priority: int
    user_id: UUID | None = None
    is_active: bool = True


@dataclass(frozen=True)
class MerchantRule(_RuleBase):
    pattern: str = ""

    def matches(self, transaction: ProviderTransaction) -> bool:
        merchant = transaction.merchant_name
        return bool(merchant) and self.pattern.lower() in merchant.lower()


@dataclass(frozen=True)
class DescriptionRule(_RuleBase):
    pattern: str = ""

    def matches(self, transaction: ProviderTransaction) -> bool:
        return self.pattern.lower() in transaction.description.lower()


@dataclass(frozen=True)
class MccRule(_RuleBase):
    code: str = ""

    def matches(self, transaction: ProviderTransaction) -> bool:
        return transaction.merchant_category_code == self.code


@dataclass(frozen=True)
class AmountRangeRule(_RuleBase):
    """Matches when the decoded amount lies in [amount_min, amount_max].

    A missing bound is open.
    """

    amount_min: Decimal | None = None
    amount_max: Decimal | None = None

    def matches(self, transaction: ProviderTransaction) -> bool:
        amount = transaction.decimal_amount()
        if self.amount_min is not None and amount < self.amount_min:
            return False
        if self.amount_max is not None and amount > self.amount_max:
            return False
        return True


Rule = Union[MerchantRule, DescriptionRule, MccRule, AmountRangeRule]


def rule_from_row(row: CategoryRule) -> Rule | None:
    """Build the rule variant for a stored row.

    Returns None for unknown rule types, which are skipped with a warning.
    """
    common = dict(
        id=row.id,
        main_category=row.main_category,
        sub_category=row.sub_category,
        confidence=float(row.confidence) if row.confidence else DEFAULT_RULE_CONFIDENCE,
        priority=row.priority if row.priority is not None else 100,
        user_id=row.user_id,
        is_active=row.is_active,
    )
    if row.rule_type == "merchant":
        return MerchantRule(pattern=row.pattern, **common)
    if row.rule_type == "description":
        return DescriptionRule(pattern=row.pattern, **common)
    if row.rule_type == "mcc":
        return MccRule(code=row.pattern, **common)
    if row.rule_type == "amount_range":
        return AmountRangeRule(amount_min=row.amount_min, amount_max=row.amount_max, **common)

    logger.warning("Skipping rule with unknown type", extra={"rule_id": str(row.id), "rule_type": row.rule_type})
    return None


def sort_rules(rules: list[Rule]) -> list[Rule]:
    """Active rules only, ascending priority; ties keep load order."""
    return sorted((rule for rule in rules if rule.is_active), key=lambda rule: rule.priority)
