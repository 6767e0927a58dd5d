"""Internal schemas passed between the resolver, store, classifier and orchestrator."""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ledgersync.config import settings

SyncMode = Literal["new_connection", "token_refresh", "consent_refresh"]
SyncKind = Literal["full", "incremental"]
CategorySource = Literal["provider", "user", "mcc", "merchant", "description", "amount", "default", "ai", "manual"]
DuplicateReason = Literal["same_tink_account", "same_institution_and_identifiers", "same_credentials"]


class DateRange(BaseModel):
    """Inclusive booked-date window for a fetch."""

    date_from: date = Field(..., description="First booked date (inclusive)")
    date_to: date = Field(..., description="Last booked date (inclusive)")

    @field_validator("date_to")
    @classmethod
    def not_before_start(cls, v: date, info) -> date:
        start = info.data.get("date_from")
        if start is not None and v < start:
            raise ValueError("date_to must not be before date_from")
        return v


class SyncOptions(BaseModel):
    """Caller options for a sync run."""

    months: int = Field(default_factory=lambda: settings.default_date_range_months)
    include_all_statuses: bool = True
    skip_credentials_refresh: bool = False
    force_full: bool = False
    include_status_updates: bool = True

    @field_validator("months")
    @classmethod
    def clamp_months(cls, v: int) -> int:
        """Clamp the window into the configured min/max months."""
        return max(settings.min_date_range_months, min(settings.max_date_range_months, v))


class StoreResult(BaseModel):
    """Outcome of storing a list of transactions."""

    created: int = 0
    updated: int = 0
    errors: list[str] = Field(default_factory=list)

    def merge(self, other: "StoreResult") -> "StoreResult":
        return StoreResult(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            errors=[*self.errors, *other.errors],
        )


class SyncResult(BaseModel):
    """Terminal outcome of one account sync."""

    success: bool
    account_id: UUID | None
    transactions_created: int = 0
    transactions_updated: int = 0
    errors: list[str] = Field(default_factory=list)
    total_transactions_fetched: int = 0
    mode: SyncMode | None = None
    kind: SyncKind | None = None
    # Catalog code of the error that failed the run, if any
    error_code: str | None = None
    retry_allowed: bool | None = None


class SyncStatus(BaseModel):
    """Aggregate sync bookkeeping for one account."""

    last_synced: datetime | None = None
    total_transactions: int = 0
    oldest_date: date | None = None
    newest_date: date | None = None


class SyncModeResolution(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    mode: SyncMode
    existing_accounts: list = Field(default_factory=list)
    last_sync_date: datetime | None = None


class DuplicateCheck(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    is_duplicate: bool
    existing_account: object | None = None
    reason: DuplicateReason | None = None


class AccountSyncResult(BaseModel):
    """Outcome of syncing the provider's account list into the database."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    mode: SyncMode
    created: int = 0
    updated: int = 0
    accounts: list = Field(default_factory=list)


class CategorizationResult(BaseModel):
    """Category assigned to one transaction."""

    main_category: str
    sub_category: str
    source: CategorySource
    confidence: float = Field(..., ge=0.0, le=1.0)
    needs_review: bool = False
    rule_id: UUID | None = None


class TransactionFilters(BaseModel):
    """Optional filters for listing stored transactions. Unset fields match everything."""

    account_id: UUID | None = None
    date_from: date | None = Field(None, description="Booked on or after (inclusive)")
    date_to: date | None = Field(None, description="Booked on or before (inclusive)")
    statuses: list[str] | None = Field(None, description="Any of these statuses")
    main_category: str | None = None
    sub_category: str | None = None
    needs_review: bool | None = None
    search: str | None = Field(None, description="Case-insensitive match on merchant or description")

    @model_validator(mode="after")
    def dates_in_order(self) -> "TransactionFilters":
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to must not be before date_from")
        return self


class PaginationMeta(BaseModel):
    """Pagination metadata for list results."""

    page: int = Field(description="Current page number (1-indexed)")
    limit: int = Field(description="Items per page")
    total: int = Field(description="Total number of items")
    total_pages: int = Field(description="Total number of pages")


class TransactionView(BaseModel):
    """A stored transaction as returned to callers."""

    id: UUID
    external_transaction_id: str
    account_id: UUID
    booked_date: date
    status: str
    amount: int = Field(description="Amount in minor units of amount_scale")
    amount_scale: int
    currency_code: str
    display_description: str | None = None
    merchant_name: str | None = None
    main_category: str | None = None
    sub_category: str | None = None
    category_source: str | None = None
    category_confidence: float | None = None
    needs_review: bool = False

    model_config = ConfigDict(from_attributes=True)


class TransactionListResult(BaseModel):
    """Paginated list of transactions."""

    transactions: list[TransactionView]
    pagination: PaginationMeta
