"""Shared HTTP retry helper with exponential backoff.

Used by every aggregator call so that retry behaviour stays consistent.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

import httpx

from ledgersync.config import settings
from ledgersync.core.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class HttpRetry:
    """Send HTTP requests, retrying transient failures.

    A response is returned as soon as it is successful or carries a status
    that retrying cannot fix (most 4xx). Transport errors and retryable
    statuses are retried until ``max_retries + 1`` attempts were made, then
    RetryExhaustedError is raised.
    """

    def __init__(
        self,
        max_retries: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        jitter_ratio: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_retries = settings.retry_max_retries if max_retries is None else max_retries
        self.base_delay = settings.retry_base_delay_seconds if base_delay is None else base_delay
        self.max_delay = settings.retry_max_delay_seconds if max_delay is None else max_delay
        self.jitter_ratio = settings.retry_jitter_ratio if jitter_ratio is None else jitter_ratio
        self._sleep = sleep

    @staticmethod
    def is_retryable(status_code: int) -> bool:
        return status_code >= 500 or status_code in RETRYABLE_STATUSES

    def compute_delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (attempt is zero based)."""
        exponential = self.base_delay * (2**attempt)
        jitter = random.random() * self.jitter_ratio * exponential
        return min(exponential + jitter, self.max_delay)

    async def send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        description: str = "HTTP request",
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request with retries.

        Args:
            client: HTTP client used for the request
            method: HTTP method
            url: Absolute or client-relative URL
            description: Short label used in log lines and errors
            **kwargs: Passed through to ``client.request``

        Returns:
            The first successful or non-retryable response

        Raises:
            RetryExhaustedError: If every attempt failed
        """
        attempts = self.max_retries + 1
        last_error: Exception | None = None
        last_status: int | None = None
        last_body: str | None = None

        for attempt in range(attempts):
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                last_error = exc
                last_status = None
                last_body = None
                logger.warning(
                    "%s: network error on attempt %d/%d: %s",
                    description,
                    attempt + 1,
                    attempts,
                    exc,
                )
            else:
                if response.is_success or not self.is_retryable(response.status_code):
                    if attempt > 0:
                        logger.info("%s: succeeded after %d attempts", description, attempt + 1)
                    return response

                last_status = response.status_code
                last_body = response.text
                last_error = None
                logger.warning(
                    "%s: retryable HTTP %d on attempt %d/%d",
                    description,
                    response.status_code,
                    attempt + 1,
                    attempts,
                )

            if attempt == attempts - 1:
                break

            delay = self.compute_delay(attempt)
            logger.debug("%s: waiting %.2fs before retry", description, delay)
            await self._sleep(delay)

        raise RetryExhaustedError(
            description,
            attempts=attempts,
            last_error=last_error,
            status_code=last_status,
            body=last_body,
        )
