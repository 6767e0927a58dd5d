"""Wire schemas for the aggregator's accounts and transactions API.

Field names follow the provider's camelCase JSON; Python attributes are
snake_case and either spelling is accepted on input.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

TransactionStatus = Literal["BOOKED", "PENDING", "UNDEFINED"]
ALL_STATUSES: tuple[str, ...] = ("BOOKED", "PENDING", "UNDEFINED")
BOOKED_ONLY: tuple[str, ...] = ("BOOKED",)


class ProviderModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ScaledValue(ProviderModel):
    """An exact decimal as ``unscaled_value * 10**-scale``."""

    scale: int = Field(..., description="Number of decimal places")
    unscaled_value: int = Field(..., alias="unscaledValue", description="Integer value before scaling")

    def to_decimal(self) -> Decimal:
        return Decimal(self.unscaled_value).scaleb(-self.scale)


class ExactAmount(ProviderModel):
    """Amount with currency as sent by the aggregator."""

    currency_code: str = Field(..., alias="currencyCode")
    value: ScaledValue

    def to_decimal(self) -> Decimal:
        """Decode the exact amount (e.g., unscaled 150000 with scale 2 -> 1500.00)."""
        return self.value.to_decimal()

    def to_minor_units(self, minor_unit: int = 2) -> int:
        """Convert to integer minor units (e.g., cents), rounding half up."""
        quantum = Decimal(1).scaleb(-minor_unit)
        rounded = self.to_decimal().quantize(quantum, rounding=ROUND_HALF_UP)
        return int(rounded.scaleb(minor_unit))


class PfmCategory(ProviderModel):
    id: str | None = None
    name: str | None = None


class TransactionCategories(ProviderModel):
    pfm: PfmCategory | None = None


class TransactionDates(ProviderModel):
    booked: date
    value: date | None = None
    transaction: date | None = None


class TransactionDescriptions(ProviderModel):
    display: str | None = None
    original: str | None = None


class TransactionIdentifiers(ProviderModel):
    provider_transaction_id: str | None = Field(None, alias="providerTransactionId")


class MerchantInformation(ProviderModel):
    merchant_category_code: str | None = Field(None, alias="merchantCategoryCode")
    merchant_name: str | None = Field(None, alias="merchantName")


class TransactionTypes(ProviderModel):
    type: str | None = None
    financial_institution_type_code: str | None = Field(None, alias="financialInstitutionTypeCode")


class ProviderTransaction(ProviderModel):
    """A transaction exactly as returned by ``GET /data/v2/transactions``."""

    id: str
    account_id: str = Field(..., alias="accountId")
    amount: ExactAmount
    categories: TransactionCategories | None = None
    dates: TransactionDates
    descriptions: TransactionDescriptions = Field(default_factory=TransactionDescriptions)
    identifiers: TransactionIdentifiers | None = None
    merchant_information: MerchantInformation | None = Field(None, alias="merchantInformation")
    status: TransactionStatus = "UNDEFINED"
    types: TransactionTypes | None = None
    reference: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def unknown_status_is_undefined(cls, v: object) -> object:
        """Map statuses outside the known set to UNDEFINED."""
        if v is None or (isinstance(v, str) and v.upper() not in ALL_STATUSES):
            return "UNDEFINED"
        return v.upper() if isinstance(v, str) else v

    @property
    def merchant_name(self) -> str | None:
        return self.merchant_information.merchant_name if self.merchant_information else None

    @property
    def merchant_category_code(self) -> str | None:
        return self.merchant_information.merchant_category_code if self.merchant_information else None

    @property
    def provider_category_name(self) -> str | None:
        if self.categories and self.categories.pfm:
            return self.categories.pfm.name
        return None

    @property
    def description(self) -> str:
        """Display description, falling back to the original one."""
        return self.descriptions.display or self.descriptions.original or ""

    def decimal_amount(self) -> Decimal:
        return self.amount.to_decimal()


class RejectedTransaction(ProviderModel):
    """A page item that could not be read as a transaction."""

    index: int
    transaction_id: str | None = None
    reason: str


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'item'}: {error['msg']}" for error in exc.errors()
    )


class TransactionPage(ProviderModel):
    """One page of the transactions listing.

    Items are parsed one at a time. An item that does not parse is kept in
    ``rejected`` with its position on the page, so one bad row never costs
    the rest of the page.
    """

    transactions: list[ProviderTransaction] = Field(default_factory=list)
    rejected: list[RejectedTransaction] = Field(default_factory=list)
    next_page_token: str | None = Field(None, alias="nextPageToken")

    @model_validator(mode="before")
    @classmethod
    def set_aside_malformed(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("transactions"), list):
            return data

        parsed: list[ProviderTransaction] = []
        rejected: list[RejectedTransaction] = []
        for index, item in enumerate(data["transactions"]):
            try:
                parsed.append(ProviderTransaction.model_validate(item))
            except ValidationError as exc:
                item_id = item.get("id") if isinstance(item, dict) else None
                rejected.append(
                    RejectedTransaction(
                        index=index,
                        transaction_id=item_id if isinstance(item_id, str) else None,
                        reason=_describe(exc),
                    )
                )
        return {**data, "transactions": parsed, "rejected": rejected}

    @field_validator("next_page_token", mode="before")
    @classmethod
    def empty_token_is_none(cls, v: object) -> object:
        return v or None


class Balance(ProviderModel):
    amount: ExactAmount


class AccountBalances(ProviderModel):
    booked: Balance | None = None
    available: Balance | None = None


class AccountDates(ProviderModel):
    last_refreshed: datetime | None = Field(None, alias="lastRefreshed")


class IbanIdentifier(ProviderModel):
    iban: str | None = None
    bban: str | None = None


class AccountIdentifiers(ProviderModel):
    iban: IbanIdentifier | None = None


class ProviderAccount(ProviderModel):
    """An account as returned by ``GET /data/v2/accounts``."""

    id: str
    name: str = ""
    type: str = "UNDEFINED"
    balances: AccountBalances | None = None
    dates: AccountDates | None = None
    financial_institution_id: str | None = Field(None, alias="financialInstitutionId")
    identifiers: AccountIdentifiers | None = None
    credentials_id: str | None = Field(None, alias="credentialsId")

    @property
    def iban(self) -> str | None:
        if self.identifiers and self.identifiers.iban:
            return self.identifiers.iban.iban
        return None

    @property
    def booked_balance(self) -> ExactAmount | None:
        if self.balances and self.balances.booked:
            return self.balances.booked.amount
        return None

    @property
    def last_refreshed(self) -> datetime | None:
        return self.dates.last_refreshed if self.dates else None


class AccountsPage(ProviderModel):
    accounts: list[ProviderAccount] = Field(default_factory=list)
    next_page_token: str | None = Field(None, alias="nextPageToken")

    @field_validator("next_page_token", mode="before")
    @classmethod
    def empty_token_is_none(cls, v: object) -> object:
        return v or None
