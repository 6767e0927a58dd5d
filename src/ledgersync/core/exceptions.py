"""Custom exception classes for the ingestion pipeline.

This module defines the hierarchy of exceptions raised by the fetch client,
the account resolver, the upsert store and the classifier. Each exception
maps to an error code defined in errors.py.
"""

from typing import Any


class IngestionError(Exception):
    """Base exception for all ingestion errors.

    Attributes:
        error_code: Code from the error catalog (e.g., "FETCH_001")
        details: Additional context about the error (for logging)
        http_status: HTTP status code a caller should surface (default: 500)
    """

    def __init__(
        self,
        error_code: str,
        details: dict[str, Any] | None = None,
        http_status: int = 500,
        message: str | None = None,
    ):
        """Initialize the exception.

        Args:
            error_code: Error code from errors.py
            details: Additional error context (not shown to users)
            http_status: HTTP status code (default: 500)
            message: Human readable message; defaults to the error code
        """
        self.error_code = error_code
        self.details = details or {}
        self.http_status = http_status
        super().__init__(message or error_code)


class AggregatorFetchError(IngestionError):
    """Raised when the aggregator answers with a non-2xx status or cannot be reached.

    The status code and response body are kept verbatim so they can be
    reported in the sync result.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        error_code: str = "FETCH_001",
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(
            error_code,
            details={"status_code": status_code, "body": body},
            http_status=502,
            message=message,
        )


class RetryExhaustedError(AggregatorFetchError):
    """Raised after every retry attempt of a request has failed."""

    def __init__(
        self,
        description: str,
        attempts: int,
        last_error: Exception | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ):
        self.attempts = attempts
        self.last_error = last_error
        reason = f"HTTP {status_code}: {body}" if status_code is not None else str(last_error)
        super().__init__(
            f"{description} failed after {attempts} attempts: {reason}",
            status_code=status_code,
            body=body,
            error_code="FETCH_002",
        )


class CredentialRefreshError(IngestionError):
    """Raised when the aggregator rejects a credentials refresh.

    Callers treat this as non-fatal.
    """

    def __init__(self, credentials_id: str, status_code: int | None = None, body: str | None = None):
        self.credentials_id = credentials_id
        self.status_code = status_code
        self.body = body
        super().__init__(
            "CRED_001",
            details={"credentials_id": credentials_id, "status_code": status_code, "body": body},
            http_status=502,
            message=f"Failed to refresh credentials: {status_code} {body}",
        )


class AccountNotFoundError(IngestionError):
    """Raised when an account does not exist or does not belong to the user."""

    def __init__(self, account_id: Any, user_id: Any):
        super().__init__(
            "ACCT_001",
            details={"account_id": str(account_id), "user_id": str(user_id)},
            http_status=404,
            message="Account not found or access denied",
        )


class TransactionNotFoundError(IngestionError):
    """Raised when a stored transaction is missing, deleted, or owned by another user."""

    def __init__(self, transaction_id: Any, user_id: Any):
        super().__init__(
            "TXN_001",
            details={"transaction_id": str(transaction_id), "user_id": str(user_id)},
            http_status=404,
            message="Transaction not found",
        )


class InvalidCategoryError(IngestionError):
    """Raised when a manual category is not a pair from the taxonomy."""

    def __init__(self, main_category: str, sub_category: str):
        super().__init__(
            "TXN_002",
            details={"main_category": main_category, "sub_category": sub_category},
            http_status=422,
            message=f"Unknown category: {main_category} / {sub_category}",
        )


class StorageBatchError(IngestionError):
    """Raised when one upsert batch fails.

    Attributes:
        start: Index of the first transaction in the batch
        end: Index one past the last transaction in the batch
    """

    def __init__(self, start: int, end: int, cause: Exception):
        self.start = start
        self.end = end
        self.cause = cause
        super().__init__(
            "STORE_001",
            details={"start": start, "end": end, "cause": str(cause)},
            message=f"Batch {start}-{end - 1}: {cause}",
        )


class ClassificationError(IngestionError):
    """Raised when the external classifier call or its response is unusable.

    Common causes:
    - Timeout (CLASS_001)
    - Response without a parsable JSON array (CLASS_002)
    - Result count or category pair mismatch (CLASS_003)
    """

    def __init__(self, error_code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(error_code, details=details, message=message)


class ConfigurationError(IngestionError):
    """Raised when a required setting is missing."""

    def __init__(self, setting: str):
        super().__init__(
            "CONF_001",
            details={"setting": setting},
            message=f"Missing required setting: {setting}",
        )
