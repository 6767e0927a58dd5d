"""Ingestion services: account resolution, transaction storage, sync orchestration and queries."""

from .account_resolver import AccountResolver
from .sync import SyncOrchestrator
from .transaction_query import TransactionQueryService
from .transaction_store import TransactionStore

__all__ = ["AccountResolver", "SyncOrchestrator", "TransactionQueryService", "TransactionStore"]
