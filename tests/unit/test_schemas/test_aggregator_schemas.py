"""Tests for the aggregator wire schemas."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from ledgersync.schemas.aggregator import (
    AccountsPage,
    ExactAmount,
    ProviderAccount,
    TransactionPage,
)
from ledgersync.schemas.internal import DateRange, StoreResult, SyncOptions


def _amount(unscaled: str, scale: str) -> ExactAmount:
    return ExactAmount.model_validate(
        {"currencyCode": "EUR", "value": {"unscaledValue": unscaled, "scale": scale}}
    )


class TestExactAmount:
    """Decoding of unscaled value and scale."""

    @pytest.mark.parametrize(
        "unscaled,scale,expected",
        [
            ("150000", "2", Decimal("1500.00")),
            ("-50000", "2", Decimal("-500.00")),
            ("999999999", "2", Decimal("9999999.99")),
            ("1250", "0", Decimal("1250")),
            ("12345", "3", Decimal("12.345")),
        ],
    )
    def test_to_decimal(self, unscaled, scale, expected):
        assert _amount(unscaled, scale).to_decimal() == expected

    def test_to_decimal_is_exact(self):
        assert str(_amount("-1999", "2").to_decimal()) == "-19.99"

    def test_to_minor_units(self):
        assert _amount("150000", "2").to_minor_units() == 150000
        assert _amount("12345", "3").to_minor_units() == 1235
        assert _amount("-7", "0").to_minor_units() == -700


class TestProviderTransaction:
    def test_camel_case_fields(self, make_transaction):
        tx = make_transaction(
            merchant_name="Starbucks Paris",
            mcc="5814",
            pfm_name="Food and drink",
            reference="REF-1",
        )

        assert tx.account_id == "ext-acc-1"
        assert tx.merchant_name == "Starbucks Paris"
        assert tx.merchant_category_code == "5814"
        assert tx.provider_category_name == "Food and drink"
        assert tx.reference == "REF-1"
        assert tx.decimal_amount() == Decimal("-12.50")

    @pytest.mark.parametrize("raw", ["CANCELLED", None, "weird"])
    def test_unknown_status_is_undefined(self, make_transaction, raw):
        assert make_transaction(status=raw).status == "UNDEFINED"

    def test_status_is_upper_cased(self, make_transaction):
        assert make_transaction(status="pending").status == "PENDING"

    def test_description_falls_back_to_original(self, make_transaction):
        tx = make_transaction(display=None, original="SEPA TRANSFER 123")
        assert tx.description == "SEPA TRANSFER 123"

    def test_missing_optional_sections(self, make_transaction):
        tx = make_transaction(display=None)
        assert tx.merchant_name is None
        assert tx.merchant_category_code is None
        assert tx.provider_category_name is None
        assert tx.description == ""


class TestPages:
    def test_empty_token_means_last_page(self):
        page = TransactionPage.model_validate({"transactions": [], "nextPageToken": ""})
        assert page.next_page_token is None

    def test_token_kept(self):
        page = TransactionPage.model_validate({"transactions": [], "nextPageToken": "abc"})
        assert page.next_page_token == "abc"

    def test_malformed_item_set_aside(self):
        items = [
            {
                "id": tx_id,
                "accountId": "ext-acc-1",
                "amount": {"currencyCode": "EUR", "value": {"scale": "2", "unscaledValue": "-100"}},
                "dates": {"booked": "2024-01-15"},
            }
            for tx_id in ("a", "b", "c")
        ]
        del items[1]["dates"]["booked"]

        page = TransactionPage.model_validate({"transactions": items})

        assert [tx.id for tx in page.transactions] == ["a", "c"]
        assert len(page.rejected) == 1
        rejected = page.rejected[0]
        assert (rejected.index, rejected.transaction_id) == (1, "b")
        assert rejected.reason.startswith("dates.booked: ")

    def test_item_that_is_not_an_object(self):
        page = TransactionPage.model_validate({"transactions": ["junk"]})

        assert page.transactions == []
        assert page.rejected[0].index == 0
        assert page.rejected[0].transaction_id is None

    def test_transactions_must_be_a_list(self):
        with pytest.raises(ValidationError):
            TransactionPage.model_validate({"transactions": "junk"})

    def test_accounts_page(self):
        page = AccountsPage.model_validate(
            {
                "accounts": [
                    {
                        "id": "acc-1",
                        "name": "Checking",
                        "type": "CHECKING",
                        "financialInstitutionId": "inst-1",
                        "identifiers": {"iban": {"iban": "FR7630006000011234567890189"}},
                        "balances": {
                            "booked": {
                                "amount": {
                                    "currencyCode": "EUR",
                                    "value": {"unscaledValue": "150000", "scale": "2"},
                                }
                            }
                        },
                        "dates": {"lastRefreshed": "2024-01-10T08:00:00Z"},
                    }
                ]
            }
        )

        account = page.accounts[0]
        assert isinstance(account, ProviderAccount)
        assert account.iban == "FR7630006000011234567890189"
        assert account.booked_balance.to_minor_units() == 150000
        assert account.last_refreshed.date().isoformat() == "2024-01-10"
        assert page.next_page_token is None


class TestInternalSchemas:
    def test_date_range_rejects_inverted_window(self):
        from datetime import date

        with pytest.raises(ValueError):
            DateRange(date_from=date(2024, 2, 1), date_to=date(2024, 1, 1))

    @pytest.mark.parametrize("months,expected", [(0, 1), (3, 3), (36, 24)])
    def test_sync_options_clamp_months(self, months, expected):
        assert SyncOptions(months=months).months == expected

    def test_store_result_merge(self):
        merged = StoreResult(created=2, errors=["a"]).merge(StoreResult(updated=3, errors=["b"]))
        assert (merged.created, merged.updated, merged.errors) == (2, 3, ["a", "b"])
