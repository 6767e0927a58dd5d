"""Read-mostly queries over category rules, MCC mappings and the taxonomy."""
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgersync.models.category import CategoryRule, MainCategory, MccCategoryMapping, SubCategory
from ledgersync.repositories.base import BaseRepository


class CategoryRepository(BaseRepository[CategoryRule]):
    """Loads the data the classification cache is built from."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, CategoryRule)

    async def get_user_rules(self, user_id: UUID) -> list[CategoryRule]:
        """Active rules owned by the user, lowest priority number first."""
        result = await self.db.execute(
            select(CategoryRule)
            .where(
                CategoryRule.user_id == user_id,
                CategoryRule.is_active.is_(True),
                CategoryRule.deleted_at.is_(None),
            )
            .order_by(CategoryRule.priority, CategoryRule.created_at)
        )
        return list(result.scalars().all())

    async def get_global_rules(self) -> list[CategoryRule]:
        """Active rules shared by every user."""
        result = await self.db.execute(
            select(CategoryRule)
            .where(
                CategoryRule.user_id.is_(None),
                CategoryRule.is_active.is_(True),
                CategoryRule.deleted_at.is_(None),
            )
            .order_by(CategoryRule.priority, CategoryRule.created_at)
        )
        return list(result.scalars().all())

    async def get_mcc_mappings(self) -> list[MccCategoryMapping]:
        result = await self.db.execute(
            select(MccCategoryMapping).where(
                MccCategoryMapping.is_active.is_(True),
                MccCategoryMapping.deleted_at.is_(None),
            )
        )
        return list(result.scalars().all())

    async def get_taxonomy(self) -> list[tuple[str, str]]:
        """Active (main, sub) pairs ordered for display."""
        result = await self.db.execute(
            select(MainCategory.name, SubCategory.name)
            .join(SubCategory, SubCategory.main_category_id == MainCategory.id)
            .where(
                MainCategory.is_active.is_(True),
                SubCategory.is_active.is_(True),
                MainCategory.deleted_at.is_(None),
                SubCategory.deleted_at.is_(None),
            )
            .order_by(MainCategory.sort_order, MainCategory.name, SubCategory.sort_order, SubCategory.name)
        )
        return [(main, sub) for main, sub in result.all()]
