"""Category taxonomy and classification rule models.

These tables are seeded outside this package and read here to classify
transactions.
"""
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledgersync.models.base import BaseModel

RULE_TYPES = ("merchant", "description", "mcc", "amount_range")


class MainCategory(BaseModel):
    """Top level of the category taxonomy (e.g., "Food & Dining")."""

    __tablename__ = "main_categories"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    sub_categories: Mapped[list["SubCategory"]] = relationship(
        "SubCategory", back_populates="main_category", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<MainCategory(name={self.name})>"


class SubCategory(BaseModel):
    """Second level of the taxonomy; valid only under its main category."""

    __tablename__ = "sub_categories"

    main_category_id: Mapped[UUID] = mapped_column(
        ForeignKey("main_categories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("main_category_id", "name", name="uq_sub_categories_main_name"),
    )

    main_category: Mapped["MainCategory"] = relationship("MainCategory", back_populates="sub_categories")

    def __repr__(self) -> str:
        return f"<SubCategory(name={self.name})>"


class CategoryRule(BaseModel):
    """A stored classification rule.

    Rules with ``user_id`` set belong to one user and are evaluated before
    global rules (``user_id`` NULL). Lower ``priority`` wins.
    """

    __tablename__ = "category_rules"

    user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    rule_type: Mapped[str] = mapped_column(String(20), nullable=False)
    pattern: Mapped[str] = mapped_column(String(255), nullable=False)
    main_category: Mapped[str] = mapped_column(String(100), nullable=False)
    sub_category: Mapped[str] = mapped_column(String(100), nullable=False)
    confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    amount_min: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    amount_max: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    user: Mapped["User | None"] = relationship("User", back_populates="category_rules")

    def __repr__(self) -> str:
        return f"<CategoryRule(rule_type={self.rule_type}, pattern={self.pattern}, priority={self.priority})>"


class MccCategoryMapping(BaseModel):
    """Global mapping of a merchant category code to a taxonomy pair."""

    __tablename__ = "mcc_category_mappings"

    mcc_code: Mapped[str] = mapped_column(String(10), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    main_category: Mapped[str] = mapped_column(String(100), nullable=False)
    sub_category: Mapped[str] = mapped_column(String(100), nullable=False)
    confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<MccCategoryMapping(mcc_code={self.mcc_code})>"
