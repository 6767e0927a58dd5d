"""Built-in classification tables.

These are the fallbacks that apply when no stored rule or MCC mapping
matched. Ordering matters: earlier entries win.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

# Reserved pairs. Both are always accepted by the taxonomy check.
FALLBACK_CATEGORY: tuple[str, str] = ("Other", "Miscellaneous")
NEEDS_REVIEW_CATEGORY: tuple[str, str] = ("To Classify", "Needs Review")
RESERVED_CATEGORIES: frozenset[tuple[str, str]] = frozenset({FALLBACK_CATEGORY, NEEDS_REVIEW_CATEGORY})

PROVIDER_CONFIDENCE = 0.85
DEFAULT_RULE_CONFIDENCE = 0.9
DEFAULT_MCC_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.1

LARGE_INCOME_THRESHOLD = Decimal("1000")
SMALL_FEE_THRESHOLD = Decimal("10")

# Provider PFM category name -> (main, sub)
PROVIDER_CATEGORY_MAP: dict[str, tuple[str, str]] = {
    "Food and drink": ("Food & Dining", "Restaurants"),
    "Groceries": ("Food & Dining", "Groceries"),
    "Transportation": ("Transportation", "Other Transport"),
    "Entertainment": ("Entertainment", "Other Entertainment"),
    "Shopping": ("Shopping", "Other Shopping"),
    "Health": ("Health & Fitness", "Healthcare"),
    "Income": ("Income", "Other Income"),
    "Bills": ("Bills & Utilities", "Other Bills"),
    "Transfer": ("Banking", "Transfer"),
}


@dataclass(frozen=True)
class KeywordPattern:
    """Substrings (lower-case) mapped to one category pair."""

    keywords: tuple[str, ...]
    main_category: str
    sub_category: str
    confidence: float

    def first_match(self, normalized_text: str) -> str | None:
        for keyword in self.keywords:
            if keyword in normalized_text:
                return keyword
        return None


MERCHANT_PATTERNS: tuple[KeywordPattern, ...] = (
    # Food & Dining
    KeywordPattern(("mcdonalds", "burger king", "kfc", "subway", "pizza"), "Food & Dining", "Fast Food", 0.95),
    KeywordPattern(("starbucks", "costa", "cafe", "coffee"), "Food & Dining", "Coffee", 0.95),
    KeywordPattern(("restaurant", "bistro", "brasserie"), "Food & Dining", "Restaurants", 0.85),
    KeywordPattern(("supermarket", "grocery", "carrefour", "leclerc", "auchan"), "Food & Dining", "Groceries", 0.9),
    # Transportation
    KeywordPattern(("uber", "taxi", "bolt"), "Transportation", "Ride Share", 0.95),
    KeywordPattern(("sncf", "train", "metro", "bus"), "Transportation", "Public Transit", 0.9),
    KeywordPattern(("shell", "total", "bp", "essence", "fuel"), "Transportation", "Fuel", 0.95),
    KeywordPattern(("parking", "garage"), "Transportation", "Parking", 0.9),
    # Shopping
    KeywordPattern(("amazon", "ebay", "zalando"), "Shopping", "Online", 0.95),
    KeywordPattern(("zara", "h&m", "uniqlo"), "Shopping", "Clothing", 0.95),
    KeywordPattern(("fnac", "apple store", "samsung"), "Shopping", "Electronics", 0.9),
    # Entertainment
    KeywordPattern(("netflix", "spotify", "disney"), "Entertainment", "Streaming", 0.95),
    KeywordPattern(("cinema", "theater", "concert"), "Entertainment", "Events", 0.9),
    # Health & Fitness
    KeywordPattern(("pharmacie", "pharmacy", "doctor", "dentist"), "Health & Fitness", "Healthcare", 0.9),
    KeywordPattern(("gym", "fitness", "sport"), "Health & Fitness", "Fitness", 0.9),
    # Utilities
    KeywordPattern(("edf", "engie", "electricity", "gas"), "Bills & Utilities", "Energy", 0.95),
    KeywordPattern(("orange", "sfr", "bouygues", "free"), "Bills & Utilities", "Phone", 0.95),
    KeywordPattern(("internet", "wifi"), "Bills & Utilities", "Internet", 0.9),
)

DESCRIPTION_PATTERNS: tuple[KeywordPattern, ...] = (
    # Income
    KeywordPattern(("salary", "salaire", "wages", "payroll"), "Income", "Salary", 0.95),
    KeywordPattern(("bonus", "commission"), "Income", "Bonus", 0.9),
    KeywordPattern(("refund", "remboursement", "reimbursement"), "Income", "Refunds", 0.85),
    # Bills
    KeywordPattern(("rent", "loyer"), "Bills & Utilities", "Rent", 0.95),
    KeywordPattern(("insurance", "assurance"), "Bills & Utilities", "Insurance", 0.9),
    KeywordPattern(("tax", "impot", "taxes"), "Bills & Utilities", "Taxes", 0.9),
    # Banking
    KeywordPattern(("atm", "withdrawal", "retrait"), "Banking", "ATM", 0.95),
    KeywordPattern(("transfer", "virement"), "Banking", "Transfer", 0.9),
    KeywordPattern(("fee", "frais", "commission"), "Banking", "Fees", 0.85),
)


def normalize(text: str | None) -> str:
    return (text or "").strip().lower()


def match_keywords(
    patterns: tuple[KeywordPattern, ...], text: str | None
) -> KeywordPattern | None:
    """Return the first pattern with a keyword contained in ``text``."""
    normalized = normalize(text)
    if not normalized:
        return None
    for pattern in patterns:
        if pattern.first_match(normalized):
            return pattern
    return None
