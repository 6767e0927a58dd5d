"""Transaction model for ingested provider transactions."""
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledgersync.models.base import BaseModel

# Column widths; incoming strings are truncated to these before writing.
DESCRIPTION_MAX = 500
IDENTIFIER_MAX = 255
MERCHANT_NAME_MAX = 255
MCC_MAX = 10
TRANSACTION_TYPE_MAX = 50
FI_TYPE_CODE_MAX = 10
REFERENCE_MAX = 255
CATEGORY_MAX = 100


class Transaction(BaseModel):
    """A single provider transaction.

    ``external_transaction_id`` is the only upsert conflict key. The amount is
    kept as the provider's unscaled integer plus its scale.
    """

    __tablename__ = "transactions"

    external_transaction_id: Mapped[str] = mapped_column(String(IDENTIFIER_MAX), unique=True, nullable=False)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id: Mapped[UUID] = mapped_column(ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    external_account_id: Mapped[str] = mapped_column(String(IDENTIFIER_MAX), nullable=False)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_scale: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)

    booked_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    value_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    original_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status_last_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    display_description: Mapped[str | None] = mapped_column(String(DESCRIPTION_MAX), nullable=True)
    original_description: Mapped[str | None] = mapped_column(String(DESCRIPTION_MAX), nullable=True)
    provider_transaction_id: Mapped[str | None] = mapped_column(String(IDENTIFIER_MAX), nullable=True)
    merchant_name: Mapped[str | None] = mapped_column(String(MERCHANT_NAME_MAX), nullable=True)
    merchant_category_code: Mapped[str | None] = mapped_column(String(MCC_MAX), nullable=True)
    provider_category_id: Mapped[str | None] = mapped_column(String(IDENTIFIER_MAX), nullable=True)
    provider_category_name: Mapped[str | None] = mapped_column(String(IDENTIFIER_MAX), nullable=True)
    transaction_type: Mapped[str | None] = mapped_column(String(TRANSACTION_TYPE_MAX), nullable=True)
    fi_type_code: Mapped[str | None] = mapped_column(String(FI_TYPE_CODE_MAX), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(REFERENCE_MAX), nullable=True)

    main_category: Mapped[str | None] = mapped_column(String(CATEGORY_MAX), nullable=True, index=True)
    sub_category: Mapped[str | None] = mapped_column(String(CATEGORY_MAX), nullable=True)
    category_source: Mapped[str | None] = mapped_column(String(20), nullable=True)
    category_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    categorized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_transactions_account_id_booked_date", "account_id", "booked_date"),
    )

    # Relationships
    account: Mapped["BankAccount"] = relationship("BankAccount", back_populates="transactions")
    user: Mapped["User"] = relationship("User", back_populates="transactions")

    @property
    def decimal_amount(self) -> Decimal:
        return Decimal(self.amount).scaleb(-self.amount_scale)

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, external_transaction_id={self.external_transaction_id}, amount={self.amount})>"
