"""Error catalog for the ingestion pipeline.

Every IngestionError carries one of these codes. The catalog keeps the
user-facing wording out of the code raising the error.
"""

ERROR_CATALOG = {
    # Fetch errors
    "FETCH_001": {
        "code": "FETCH_001",
        "message": "Aggregator returned a non-success response",
        "user_message": "We couldn't load transactions from your bank.",
        "suggestion": "Please try syncing again in a few minutes.",
        "retry_allowed": True,
    },
    "FETCH_002": {
        "code": "FETCH_002",
        "message": "Aggregator request failed after all retries",
        "user_message": "Your bank connection is not responding right now.",
        "suggestion": "Please try syncing again later.",
        "retry_allowed": True,
    },
    "FETCH_003": {
        "code": "FETCH_003",
        "message": "Aggregator response could not be parsed",
        "user_message": "We received unexpected data from your bank.",
        "suggestion": "Please try again. Contact support if the problem persists.",
        "retry_allowed": True,
    },
    # Credentials
    "CRED_001": {
        "code": "CRED_001",
        "message": "Credentials refresh rejected by aggregator",
        "user_message": "We couldn't refresh your bank connection, showing the latest available data.",
        "suggestion": "Reconnect your bank if data looks out of date.",
        "retry_allowed": True,
    },
    # Accounts
    "ACCT_001": {
        "code": "ACCT_001",
        "message": "Account not found or owned by another user",
        "user_message": "We couldn't find this bank account.",
        "suggestion": "Please reconnect your bank account.",
        "retry_allowed": False,
    },
    # Storage
    "STORE_001": {
        "code": "STORE_001",
        "message": "Transaction batch could not be stored",
        "user_message": "Some transactions could not be saved.",
        "suggestion": "Run the sync again to retry the missing transactions.",
        "retry_allowed": True,
    },
    # Classification
    "CLASS_001": {
        "code": "CLASS_001",
        "message": "External classifier timed out",
        "user_message": "Some transactions are waiting for a category.",
        "suggestion": "Review uncategorized transactions or retry later.",
        "retry_allowed": True,
    },
    "CLASS_002": {
        "code": "CLASS_002",
        "message": "External classifier response was not a JSON array",
        "user_message": "Some transactions are waiting for a category.",
        "suggestion": "Review uncategorized transactions or retry later.",
        "retry_allowed": True,
    },
    "CLASS_003": {
        "code": "CLASS_003",
        "message": "External classifier returned mismatched or unknown categories",
        "user_message": "Some transactions are waiting for a category.",
        "suggestion": "Review uncategorized transactions.",
        "retry_allowed": False,
    },
    # Stored transactions
    "TXN_001": {
        "code": "TXN_001",
        "message": "Transaction not found or owned by another user",
        "user_message": "We couldn't find this transaction.",
        "suggestion": "Refresh the list and try again.",
        "retry_allowed": False,
    },
    "TXN_002": {
        "code": "TXN_002",
        "message": "Category pair is not in the taxonomy",
        "user_message": "This category is not available.",
        "suggestion": "Pick a category from the list.",
        "retry_allowed": False,
    },
    # Sync
    "SYNC_001": {
        "code": "SYNC_001",
        "message": "Unexpected error during synchronization",
        "user_message": "Something went wrong while syncing your account.",
        "suggestion": "Please try again. Contact support if the problem persists.",
        "retry_allowed": True,
    },
    # Configuration
    "CONF_001": {
        "code": "CONF_001",
        "message": "Required configuration value is missing",
        "user_message": "This feature is not available right now.",
        "suggestion": "Contact support.",
        "retry_allowed": False,
    },
}


def get_error(error_code: str) -> dict:
    """Get error definition by code.

    Args:
        error_code: Error code from the catalog

    Returns:
        Dict with error details. Unknown codes resolve to a generic entry.
    """
    if error_code not in ERROR_CATALOG:
        return {
            "code": "UNKNOWN",
            "message": f"Unknown error code: {error_code}",
            "user_message": "An unexpected error occurred.",
            "suggestion": "Please try again. Contact support if the problem persists.",
            "retry_allowed": True,
        }
    return ERROR_CATALOG[error_code]


def get_user_message(error_code: str) -> str:
    """Get user-friendly message for an error code."""
    return get_error(error_code)["user_message"]


def get_suggestion(error_code: str) -> str:
    """Get actionable suggestion for an error code."""
    return get_error(error_code)["suggestion"]


def is_retryable(error_code: str) -> bool:
    """Check if an error is retryable.

    Args:
        error_code: Error code from the catalog

    Returns:
        True if the operation can be retried, False otherwise
    """
    return get_error(error_code)["retry_allowed"]
