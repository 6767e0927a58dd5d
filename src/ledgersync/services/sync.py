"""Sync orchestration: fetch pages, classify, store, keep bookkeeping.

Modes and the fetch strategy they lead to:

- new_connection / token_refresh: initial window (N months back to today),
  all statuses, one pass
- consent_refresh without a prior sync date, or with force_full: same
  window as initial
- consent_refresh with a prior sync date: incremental window starting a
  week before it, followed by a status-update pass from the prior sync
  date that catches PENDING -> BOOKED transitions

No exception leaves this module. Every entry point returns a SyncResult
with ``success`` False when the run could not complete.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from ledgersync.aggregator.client import AggregatorClient
from ledgersync.config import settings
from ledgersync.core.errors import is_retryable
from ledgersync.core.exceptions import IngestionError
from ledgersync.models.bank_account import CONSENT_ACTIVE
from ledgersync.models.base import utcnow
from ledgersync.schemas.aggregator import RejectedTransaction
from ledgersync.schemas.internal import (
    DateRange,
    StoreResult,
    SyncMode,
    SyncOptions,
    SyncResult,
    SyncStatus,
)
from ledgersync.services.account_resolver import AccountResolver
from ledgersync.services.transaction_store import TransactionStore

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_CODE = "SYNC_001"


@dataclass
class PassOutcome:
    """Result of one pass through the page stream."""

    stored: StoreResult = field(default_factory=StoreResult)
    fetched: int = 0
    pages: int = 0
    error: Exception | None = None


def _as_date(value: datetime | date) -> date:
    return value.date() if isinstance(value, datetime) else value


class SyncOrchestrator:
    """Run account syncs against one database session.

    Args:
        db: Database session shared by the store and the resolver
        client: Aggregator client
        store: Upsert store (built from ``db`` when omitted)
        resolver: Account resolver (built from ``db`` and ``client`` when omitted)
        clock: Returns the current time; windows are computed from its date
        sleep: Used for the pause after a credentials refresh
    """

    def __init__(
        self,
        db: AsyncSession,
        client: AggregatorClient,
        store: TransactionStore | None = None,
        resolver: AccountResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.db = db
        self.client = client
        self.store = store or TransactionStore(db)
        self.resolver = resolver or AccountResolver(db, client)
        self._clock = clock
        self._sleep = sleep

    # Windows

    def today(self) -> date:
        return self._clock().date()

    def initial_window(self, months: int) -> DateRange:
        today = self.today()
        return DateRange(date_from=today - relativedelta(months=months), date_to=today)

    def incremental_window(self, last_sync_date: datetime | date) -> DateRange:
        start = _as_date(last_sync_date) - timedelta(days=settings.incremental_overlap_days)
        return DateRange(date_from=min(start, self.today()), date_to=self.today())

    def status_update_window(self, last_sync_date: datetime | date | None) -> DateRange:
        if last_sync_date is None:
            start = self.today() - timedelta(days=settings.status_update_lookback_days)
        else:
            start = _as_date(last_sync_date)
        return DateRange(date_from=min(start, self.today()), date_to=self.today())

    # Entry points

    async def sync_initial(
        self,
        user_id: UUID,
        account_id: UUID,
        access_token: str,
        options: SyncOptions | None = None,
        mode: SyncMode = "new_connection",
    ) -> SyncResult:
        """Fetch and store the last ``options.months`` months for an account."""
        options = options or SyncOptions()
        result = SyncResult(success=True, account_id=account_id, mode=mode, kind="full")
        logger.info(
            "Starting initial sync",
            extra={"account_id": str(account_id), "mode": mode, "months": options.months},
        )
        try:
            external_id, credentials_id = await self._load_account(user_id, account_id)
            await self._refresh_credentials(credentials_id, access_token, options, result)

            outcome = await self._ingest(
                user_id,
                account_id,
                external_id,
                access_token,
                self.initial_window(options.months),
                options.include_all_statuses,
            )
            self._fold(result, outcome)
            if outcome.error is None:
                await self.store.touch_last_refreshed(account_id)
        except Exception as exc:
            self._fail(result, exc)

        self._log_result("Initial sync finished", result)
        return result

    async def sync_date_range(
        self,
        user_id: UUID,
        account_id: UUID,
        access_token: str,
        date_range: DateRange,
        include_all_statuses: bool = True,
        skip_credentials_refresh: bool = False,
    ) -> SyncResult:
        """Fetch and store an explicit window. Sync bookkeeping is left as is."""
        options = SyncOptions(
            include_all_statuses=include_all_statuses,
            skip_credentials_refresh=skip_credentials_refresh,
        )
        result = SyncResult(success=True, account_id=account_id)
        try:
            external_id, credentials_id = await self._load_account(user_id, account_id)
            await self._refresh_credentials(credentials_id, access_token, options, result)
            outcome = await self._ingest(
                user_id, account_id, external_id, access_token, date_range, include_all_statuses
            )
            self._fold(result, outcome)
        except Exception as exc:
            self._fail(result, exc)

        self._log_result("Date range sync finished", result)
        return result

    async def sync_consent_refresh(
        self,
        user_id: UUID,
        account_id: UUID,
        access_token: str,
        last_sync_date: datetime | date | None = None,
        options: SyncOptions | None = None,
    ) -> SyncResult:
        """Catch up after a consent renewal, incrementally when possible."""
        options = options or SyncOptions()
        incremental = last_sync_date is not None and not options.force_full
        kind = "incremental" if incremental else "full"
        result = SyncResult(success=True, account_id=account_id, mode="consent_refresh", kind=kind)
        logger.info(
            "Starting consent refresh sync",
            extra={"account_id": str(account_id), "kind": kind},
        )
        try:
            external_id, credentials_id = await self._load_account(user_id, account_id)
            await self._refresh_credentials(credentials_id, access_token, options, result)

            window = (
                self.incremental_window(last_sync_date)
                if incremental
                else self.initial_window(options.months)
            )
            outcome = await self._ingest(
                user_id, account_id, external_id, access_token, window, options.include_all_statuses
            )
            self._fold(result, outcome)
            if outcome.error is not None:
                return result

            if incremental and options.include_status_updates:
                await self._status_update_pass(
                    user_id, account_id, external_id, access_token, last_sync_date, result
                )

            await self.store.touch_incremental_sync(account_id, kind)
            await self.store.set_consent_status(account_id, CONSENT_ACTIVE)
        except Exception as exc:
            self._fail(result, exc)
        finally:
            self._log_result("Consent refresh sync finished", result)
        return result

    async def sync_new_connection(
        self,
        user_id: UUID,
        access_token: str,
        credentials_id: str | None = None,
        is_consent_refresh: bool = False,
        scope: str | None = None,
        expires_in: int | None = None,
        options: SyncOptions | None = None,
    ) -> list[SyncResult]:
        """Resolve the mode, sync the account list, then sync every account."""
        options = options or SyncOptions()
        try:
            resolution = await self.resolver.resolve_sync_mode(user_id, credentials_id, is_consent_refresh)
            synced = await self.resolver.sync_accounts(
                user_id,
                access_token,
                scope=scope,
                expires_in=expires_in,
                credentials_id=credentials_id,
                is_consent_refresh=is_consent_refresh,
                resolution=resolution,
            )
            account_ids = [account.id for account in synced.accounts]
        except Exception as exc:
            result = SyncResult(success=False, account_id=None)
            self._fail(result, exc)
            return [result]

        results = []
        for account_id in account_ids:
            if resolution.mode == "consent_refresh":
                results.append(
                    await self.sync_consent_refresh(
                        user_id, account_id, access_token, resolution.last_sync_date, options
                    )
                )
            else:
                results.append(
                    await self.sync_initial(user_id, account_id, access_token, options, mode=resolution.mode)
                )
        return results

    async def get_sync_status(self, user_id: UUID, account_id: UUID) -> SyncStatus:
        """Bookkeeping for an account, computed with SQL aggregates.

        Raises:
            AccountNotFoundError: If the account is not the user's
        """
        await self.store.verify_account(user_id, account_id)
        return await self.store.compute_sync_status(user_id, account_id)

    # Steps

    async def _load_account(self, user_id: UUID, account_id: UUID) -> tuple[str, str | None]:
        account = await self.store.verify_account(user_id, account_id)
        # Read now; a failed batch rolls the session back and expires the instance
        return account.external_account_id, account.credentials_id

    async def _refresh_credentials(
        self,
        credentials_id: str | None,
        access_token: str,
        options: SyncOptions,
        result: SyncResult,
    ) -> None:
        """Refresh through the account's credentials ID, never its account ID.

        Failures are recorded as warnings on the result; the sync carries on
        with whatever data the aggregator already has.
        """
        if options.skip_credentials_refresh:
            return
        if not credentials_id:
            logger.info(
                "Account has no credentials id, skipping credentials refresh",
                extra={"account_id": str(result.account_id)},
            )
            return

        try:
            await self.client.refresh_credentials(credentials_id, access_token)
        except IngestionError as exc:
            logger.warning(
                "Credentials refresh failed, continuing with existing data",
                extra={"credentials_id": credentials_id, "error": str(exc)},
            )
            result.errors.append(f"Warning: credentials refresh failed: {exc}")
            return

        if settings.credentials_refresh_wait_seconds > 0:
            await self._sleep(settings.credentials_refresh_wait_seconds)

    async def _ingest(
        self,
        user_id: UUID,
        account_id: UUID,
        external_account_id: str,
        access_token: str,
        window: DateRange,
        include_all_statuses: bool,
    ) -> PassOutcome:
        """Store pages in fetch order until the stream ends or fails."""
        outcome = PassOutcome()
        stream = self.client.fetch_pages(access_token, external_account_id, window, include_all_statuses)
        try:
            async for page in stream:
                outcome.pages += 1
                outcome.fetched += len(page.transactions) + len(page.rejected)
                if page.rejected:
                    outcome.stored = outcome.stored.merge(
                        self._rejected_result(account_id, outcome.pages, page.rejected)
                    )
                if page.transactions:
                    stored = await self.store.store_batch(user_id, account_id, page.transactions)
                    outcome.stored = outcome.stored.merge(stored)
        except IngestionError as exc:
            outcome.error = exc
        except BaseException:
            stream.cancel()
            raise
        return outcome

    async def _status_update_pass(
        self,
        user_id: UUID,
        account_id: UUID,
        external_account_id: str,
        access_token: str,
        last_sync_date: datetime | date | None,
        result: SyncResult,
    ) -> None:
        outcome = await self._ingest(
            user_id,
            account_id,
            external_account_id,
            access_token,
            self.status_update_window(last_sync_date),
            include_all_statuses=True,
        )
        result.transactions_updated += outcome.stored.created + outcome.stored.updated
        result.total_transactions_fetched += outcome.fetched
        result.errors.extend(outcome.stored.errors)
        if outcome.error is not None:
            logger.warning(
                "Status update check failed",
                extra={"account_id": str(account_id), "error": str(outcome.error)},
            )
            result.errors.append(f"Warning: status update check failed: {outcome.error}")

    @staticmethod
    def _rejected_result(
        account_id: UUID, page_number: int, rejected: list[RejectedTransaction]
    ) -> StoreResult:
        """Malformed items are reported like failed batches; the page goes on."""
        for item in rejected:
            logger.warning(
                "Skipping malformed transaction",
                extra={
                    "account_id": str(account_id),
                    "page": page_number,
                    "index": item.index,
                    "transaction_id": item.transaction_id,
                    "reason": item.reason,
                },
            )
        return StoreResult(
            errors=[
                f"Page {page_number}, transaction {item.index}"
                f" ({item.transaction_id or 'no id'}): {item.reason}"
                for item in rejected
            ]
        )

    @classmethod
    def _fold(cls, result: SyncResult, outcome: PassOutcome) -> None:
        result.transactions_created += outcome.stored.created
        result.transactions_updated += outcome.stored.updated
        result.total_transactions_fetched += outcome.fetched
        result.errors.extend(outcome.stored.errors)
        if outcome.error is not None:
            result.success = False
            result.errors.append(str(outcome.error))
            cls._set_error_code(result, outcome.error)

    @classmethod
    def _fail(cls, result: SyncResult, exc: Exception) -> None:
        logger.error(
            "Sync failed",
            extra={"account_id": str(result.account_id), "error": str(exc)},
            exc_info=not isinstance(exc, IngestionError),
        )
        result.success = False
        result.errors.append(str(exc) or type(exc).__name__)
        cls._set_error_code(result, exc)

    @staticmethod
    def _set_error_code(result: SyncResult, exc: Exception) -> None:
        code = exc.error_code if isinstance(exc, IngestionError) else UNEXPECTED_ERROR_CODE
        result.error_code = code
        result.retry_allowed = is_retryable(code)

    @staticmethod
    def _log_result(message: str, result: SyncResult) -> None:
        logger.info(
            message,
            extra={
                "account_id": str(result.account_id),
                "success": result.success,
                "transactions_created": result.transactions_created,
                "transactions_updated": result.transactions_updated,
                "fetched": result.total_transactions_fetched,
                "errors": len(result.errors),
            },
        )
