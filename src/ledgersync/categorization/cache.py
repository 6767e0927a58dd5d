"""Time-bounded cache of everything the rule engine reads from the database."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ledgersync.categorization.patterns import DEFAULT_MCC_CONFIDENCE, RESERVED_CATEGORIES
from ledgersync.categorization.rules import MccRule, Rule, rule_from_row, sort_rules
from ledgersync.config import settings
from ledgersync.models.base import utcnow
from ledgersync.repositories.category import CategoryRepository

logger = logging.getLogger(__name__)


class CategorizationCache:
    """Rules, MCC mappings and taxonomy, refreshed when older than ``ttl``.

    User rules are tracked per user. Global rules, MCC mappings and the
    taxonomy are shared by every user and refreshed together. A refresh
    builds new containers and swaps them in, so concurrent readers see
    either the old or the new snapshot and concurrent refreshes simply
    overwrite each other with equivalent data.
    """

    def __init__(self, ttl: timedelta | None = None):
        self.ttl = ttl if ttl is not None else timedelta(seconds=settings.category_cache_ttl_seconds)
        self._user_rules: dict[UUID, list[Rule]] = {}
        self._user_loaded_at: dict[UUID, datetime] = {}
        self._global_rules: list[Rule] = []
        self._mcc_map: dict[str, MccRule] = {}
        self._valid_pairs: frozenset[tuple[str, str]] = frozenset()
        self._taxonomy: dict[str, list[str]] = {}
        self._global_loaded_at: datetime | None = None

    def _is_stale(self, loaded_at: datetime | None, now: datetime) -> bool:
        return loaded_at is None or now - loaded_at >= self.ttl

    async def refresh_if_stale(
        self, db: AsyncSession, user_id: UUID | None = None, now: datetime | None = None
    ) -> bool:
        """Reload whatever is older than the TTL.

        Returns:
            True if anything was reloaded
        """
        now = now or utcnow()
        repo = CategoryRepository(db)
        refreshed = False

        if self._is_stale(self._global_loaded_at, now):
            global_rules = [rule for rule in map(rule_from_row, await repo.get_global_rules()) if rule]
            mcc_map = {
                row.mcc_code: MccRule(
                    id=row.id,
                    main_category=row.main_category,
                    sub_category=row.sub_category,
                    confidence=float(row.confidence) if row.confidence else DEFAULT_MCC_CONFIDENCE,
                    priority=0,
                    code=row.mcc_code,
                )
                for row in await repo.get_mcc_mappings()
            }
            taxonomy: dict[str, list[str]] = {}
            for main, sub in await repo.get_taxonomy():
                taxonomy.setdefault(main, []).append(sub)

            self._global_rules = sort_rules(global_rules)
            self._mcc_map = mcc_map
            self._taxonomy = taxonomy
            self._valid_pairs = frozenset(
                (main, sub) for main, subs in taxonomy.items() for sub in subs
            )
            self._global_loaded_at = now
            refreshed = True

        if user_id is not None and self._is_stale(self._user_loaded_at.get(user_id), now):
            rows = await repo.get_user_rules(user_id)
            self._user_rules[user_id] = sort_rules([rule for rule in map(rule_from_row, rows) if rule])
            self._user_loaded_at[user_id] = now
            refreshed = True

        if refreshed:
            logger.info(
                "Categorization cache refreshed",
                extra={
                    "user_rules": len(self._user_rules.get(user_id, [])) if user_id else 0,
                    "global_rules": len(self._global_rules),
                    "mcc_mappings": len(self._mcc_map),
                    "valid_categories": len(self._valid_pairs),
                },
            )
        return refreshed

    def invalidate(self, user_id: UUID | None = None) -> None:
        """Force a reload on next use (one user's rules, or everything)."""
        if user_id is not None:
            self._user_loaded_at.pop(user_id, None)
            return
        self._user_loaded_at.clear()
        self._global_loaded_at = None

    def user_rules(self, user_id: UUID) -> list[Rule]:
        return self._user_rules.get(user_id, [])

    def global_rules(self) -> list[Rule]:
        return self._global_rules

    def mcc_rule(self, code: str | None) -> MccRule | None:
        if not code:
            return None
        return self._mcc_map.get(code)

    def is_valid_pair(self, main_category: str | None, sub_category: str | None) -> bool:
        pair = (main_category or "", sub_category or "")
        return pair in RESERVED_CATEGORIES or pair in self._valid_pairs

    def taxonomy(self) -> dict[str, list[str]]:
        """Main category -> ordered sub categories."""
        return {main: list(subs) for main, subs in self._taxonomy.items()}


# Used by every engine built without an explicit cache.
shared_cache = CategorizationCache()
