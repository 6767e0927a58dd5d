"""Lazy, cancellable sequence of transaction pages."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from ledgersync.schemas.aggregator import TransactionPage

logger = logging.getLogger(__name__)

PageFetcher = Callable[[str | None], Awaitable[TransactionPage]]


class PageStream:
    """Async iterator over continuation-token pages.

    Each ``__anext__`` performs at most one request. The stream ends when a
    page carries no continuation token, after ``cancel()``, or after the
    fetcher raised (the error propagates to the consumer once).

    Example:
        stream = client.fetch_pages(token, account_id, window)
        async for page in stream:
            if fatal:
                stream.cancel()
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        page_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._fetch_page = fetch_page
        self._page_delay = page_delay
        self._sleep = sleep
        self._next_token: str | None = None
        self._exhausted = False
        self._cancelled = asyncio.Event()
        self.pages_fetched = 0
        self.transactions_fetched = 0

    @property
    def has_more(self) -> bool:
        """True while another page may be requested."""
        return not self._exhausted and not self._cancelled.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop before the next request. Pages already returned stay valid."""
        self._cancelled.set()

    def __aiter__(self) -> "PageStream":
        return self

    async def __anext__(self) -> TransactionPage:
        if not self.has_more:
            raise StopAsyncIteration

        if self.pages_fetched > 0 and self._page_delay > 0:
            await self._sleep(self._page_delay)
            if self._cancelled.is_set():
                raise StopAsyncIteration

        try:
            page = await self._fetch_page(self._next_token)
        except BaseException:
            self._exhausted = True
            raise

        self.pages_fetched += 1
        self.transactions_fetched += len(page.transactions) + len(page.rejected)
        self._next_token = page.next_page_token
        if not self._next_token:
            self._exhausted = True

        logger.debug(
            "Fetched page %d with %d transactions",
            self.pages_fetched,
            len(page.transactions),
            extra={"has_more": self.has_more},
        )
        return page
