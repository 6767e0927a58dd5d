"""HTTP client for the open-banking aggregator.

Covers the three calls the ingestion pipeline needs: paginated transaction
listing, account listing and credentials refresh. Every request goes through
the shared HttpRetry helper and carries the user's bearer token.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

import httpx
from pydantic import ValidationError

from ledgersync.aggregator.stream import PageStream
from ledgersync.config import settings
from ledgersync.core.exceptions import AggregatorFetchError, CredentialRefreshError
from ledgersync.core.retry import HttpRetry
from ledgersync.schemas.aggregator import (
    ALL_STATUSES,
    BOOKED_ONLY,
    AccountsPage,
    ProviderAccount,
    TransactionPage,
)
from ledgersync.schemas.internal import DateRange

logger = logging.getLogger(__name__)

TRANSACTIONS_PATH = "/data/v2/transactions"
ACCOUNTS_PATH = "/data/v2/accounts"
CREDENTIALS_REFRESH_PATH = "/data/v2/credentials/{credentials_id}/refresh"


class AggregatorClient:
    """Async client for the aggregator's data API.

    The client owns its ``httpx.AsyncClient`` unless one is passed in.
    Use it as an async context manager or call ``aclose()``.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        retry: HttpRetry | None = None,
        page_size: int | None = None,
        page_delay: float | None = None,
        timeout: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.aggregator_api_url).rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.aggregator_timeout_seconds,
        )
        self.retry = retry or HttpRetry(sleep=sleep)
        self.page_size = page_size or settings.aggregator_page_size
        self.page_delay = settings.aggregator_page_delay_seconds if page_delay is None else page_delay
        self._sleep = sleep

    async def __aenter__(self) -> "AggregatorClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @staticmethod
    def _headers(access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    def build_transaction_params(
        self,
        account_id: str,
        date_range: DateRange,
        statuses: Iterable[str],
        page_token: str | None = None,
    ) -> list[tuple[str, str]]:
        """Query parameters for one transactions page; ``statusIn`` repeats."""
        params = [
            ("accountIdIn", account_id),
            ("bookedDateGte", date_range.date_from.isoformat()),
            ("bookedDateLte", date_range.date_to.isoformat()),
            ("pageSize", str(self.page_size)),
        ]
        params.extend(("statusIn", status) for status in statuses)
        if page_token:
            params.append(("pageToken", page_token))
        return params

    async def fetch_page(
        self,
        access_token: str,
        account_id: str,
        date_range: DateRange,
        statuses: Iterable[str] = ALL_STATUSES,
        page_token: str | None = None,
    ) -> TransactionPage:
        """Fetch a single page of transactions.

        Raises:
            AggregatorFetchError: On a non-2xx answer or an unparsable body
            RetryExhaustedError: If transient failures outlasted every retry
        """
        response = await self.retry.send(
            self._http,
            "GET",
            self._url(TRANSACTIONS_PATH),
            description=f"Fetch transactions for account {account_id}",
            params=self.build_transaction_params(account_id, date_range, statuses, page_token),
            headers=self._headers(access_token),
        )
        if not response.is_success:
            raise AggregatorFetchError(
                f"Failed to fetch transactions: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return TransactionPage.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AggregatorFetchError(
                f"Invalid transactions response: {exc}",
                status_code=response.status_code,
                body=response.text,
                error_code="FETCH_003",
            ) from exc

    def fetch_pages(
        self,
        access_token: str,
        account_id: str,
        date_range: DateRange,
        include_all_statuses: bool = True,
    ) -> PageStream:
        """Lazily page through an account's transactions in the window.

        Nothing is requested until the stream is iterated.
        """
        statuses = ALL_STATUSES if include_all_statuses else BOOKED_ONLY
        logger.info(
            "Fetching transactions",
            extra={
                "account_id": account_id,
                "date_from": date_range.date_from.isoformat(),
                "date_to": date_range.date_to.isoformat(),
                "statuses": list(statuses),
            },
        )

        async def _fetch(page_token: str | None) -> TransactionPage:
            return await self.fetch_page(access_token, account_id, date_range, statuses, page_token)

        return PageStream(_fetch, page_delay=self.page_delay, sleep=self._sleep)

    async def refresh_credentials(self, credentials_id: str, access_token: str) -> None:
        """Ask the aggregator to pull fresh data from the bank.

        Raises:
            CredentialRefreshError: On a non-2xx answer
            RetryExhaustedError: If transient failures outlasted every retry
        """
        response = await self.retry.send(
            self._http,
            "POST",
            self._url(CREDENTIALS_REFRESH_PATH.format(credentials_id=credentials_id)),
            description=f"Refresh credentials {credentials_id}",
            headers=self._headers(access_token),
        )
        if not response.is_success:
            raise CredentialRefreshError(credentials_id, response.status_code, response.text)
        logger.info("Credentials refreshed", extra={"credentials_id": credentials_id})

    async def list_accounts(self, access_token: str) -> list[ProviderAccount]:
        """Fetch every account the token grants access to."""
        accounts: list[ProviderAccount] = []
        page_token: str | None = None

        while True:
            params = {"pageToken": page_token} if page_token else None
            response = await self.retry.send(
                self._http,
                "GET",
                self._url(ACCOUNTS_PATH),
                description="Fetch accounts",
                params=params,
                headers=self._headers(access_token),
            )
            if not response.is_success:
                raise AggregatorFetchError(
                    f"Failed to fetch accounts: {response.status_code} {response.text}",
                    status_code=response.status_code,
                    body=response.text,
                )
            try:
                page = AccountsPage.model_validate(response.json())
            except (ValueError, ValidationError) as exc:
                raise AggregatorFetchError(
                    f"Invalid accounts response: {exc}",
                    status_code=response.status_code,
                    body=response.text,
                    error_code="FETCH_003",
                ) from exc

            accounts.extend(page.accounts)
            if not page.next_page_token:
                break
            page_token = page.next_page_token

        logger.info("Fetched %d accounts", len(accounts))
        return accounts
