"""Bank account model for accounts linked through the aggregator."""
from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledgersync.models.base import BaseModel

CONSENT_ACTIVE = "ACTIVE"


class BankAccount(BaseModel):
    """A provider account owned by a user.

    At most one row exists per (user_id, external_account_id). Rows are never
    hard-deleted by syncing; they go away only with the owning user.
    """

    __tablename__ = "bank_accounts"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    external_account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(String(50), nullable=False, default="UNDEFINED")
    institution_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credentials_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    iban: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Stored in minor units (e.g., cents)
    balance: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    last_refreshed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_incremental_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    consent_status: Mapped[str] = mapped_column(String(20), nullable=False, default=CONSENT_ACTIVE)
    consent_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # OAuth token; encrypted at rest by the storage layer
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    token_scope: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "external_account_id", name="uq_bank_accounts_user_external"),
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="bank_accounts")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<BankAccount(id={self.id}, external_account_id={self.external_account_id})>"
