"""Tests for exceptions and the error catalog."""

import pytest

from ledgersync.core.errors import (
    ERROR_CATALOG,
    get_error,
    get_suggestion,
    get_user_message,
    is_retryable,
)
from ledgersync.core.exceptions import (
    AccountNotFoundError,
    AggregatorFetchError,
    ClassificationError,
    ConfigurationError,
    CredentialRefreshError,
    IngestionError,
    InvalidCategoryError,
    RetryExhaustedError,
    StorageBatchError,
    TransactionNotFoundError,
)


class TestErrorCatalog:
    def test_entries_are_complete(self):
        for code, entry in ERROR_CATALOG.items():
            assert entry["code"] == code
            assert entry["message"]
            assert entry["user_message"]
            assert entry["suggestion"]
            assert isinstance(entry["retry_allowed"], bool)

    def test_unknown_code(self):
        error = get_error("NOPE_999")
        assert error["code"] == "UNKNOWN"
        assert "NOPE_999" in error["message"]

    def test_helpers(self):
        assert get_user_message("ACCT_001") == ERROR_CATALOG["ACCT_001"]["user_message"]
        assert get_suggestion("FETCH_002") == ERROR_CATALOG["FETCH_002"]["suggestion"]
        assert is_retryable("FETCH_001") is True
        assert is_retryable("ACCT_001") is False

    @pytest.mark.parametrize(
        "exc",
        [
            AggregatorFetchError("bad", status_code=400, body="oops"),
            RetryExhaustedError("Fetch", attempts=4, status_code=503, body=""),
            CredentialRefreshError("cred-1", 401, "unauthorized"),
            AccountNotFoundError("acc", "user"),
            StorageBatchError(0, 50, RuntimeError("db down")),
            ClassificationError("CLASS_001", "timeout"),
            ConfigurationError("ai_api_key"),
            TransactionNotFoundError("tx", "user"),
            InvalidCategoryError("Food & Dining", "Rent"),
        ],
    )
    def test_every_exception_code_is_cataloged(self, exc):
        assert isinstance(exc, IngestionError)
        assert exc.error_code in ERROR_CATALOG


class TestExceptions:
    def test_fetch_error_keeps_status_and_body(self):
        error = AggregatorFetchError("Failed to fetch transactions: 400 bad", status_code=400, body="bad")
        assert error.status_code == 400
        assert error.body == "bad"
        assert error.details == {"status_code": 400, "body": "bad"}
        assert str(error) == "Failed to fetch transactions: 400 bad"

    def test_storage_batch_message_uses_inclusive_end(self):
        error = StorageBatchError(50, 100, RuntimeError("constraint violated"))
        assert str(error) == "Batch 50-99: constraint violated"
        assert error.details["start"] == 50

    def test_account_not_found(self):
        error = AccountNotFoundError("acc-1", "user-1")
        assert error.http_status == 404
        assert error.details == {"account_id": "acc-1", "user_id": "user-1"}

    def test_credential_refresh_error(self):
        error = CredentialRefreshError("cred-1", 401, "expired")
        assert error.credentials_id == "cred-1"
        assert "401 expired" in str(error)

    def test_transaction_errors_are_client_errors(self):
        assert TransactionNotFoundError("tx-1", "user-1").http_status == 404
        error = InvalidCategoryError("Food & Dining", "Rent")
        assert error.http_status == 422
        assert str(error) == "Unknown category: Food & Dining / Rent"
        assert is_retryable(error.error_code) is False
