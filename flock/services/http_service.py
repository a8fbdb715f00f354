"""HTTP helpers with timeouts and retry/backoff for provider calls."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

from flock.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.5
DEFAULT_MAX_DELAY = 4.0


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """Execute an HTTP request with exponential backoff retries."""
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            delay = _backoff_delay(attempt, base_delay, max_delay)
            logger.warning("HTTP request failed (%s), retrying", type(exc).__name__)
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            delay = _backoff_delay(attempt, base_delay, max_delay)
            logger.warning("HTTP request returned %s, retrying", response.status_code)
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response


async def post_json(
    url: str,
    *,
    json: object,
    headers: dict[str, str] | None = None,
    auth: httpx.Auth | tuple[str, str] | None = None,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> httpx.Response:
    """
    POST a JSON body with a bounded timeout and retries.

    Every client gets a timeout (HTTP_TIMEOUT_SECONDS unless overridden).
    """
    client_timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
    async with httpx.AsyncClient(
        timeout=client_timeout, auth=auth, transport=transport
    ) as client:

        async def request_fn() -> httpx.Response:
            return await client.post(url, headers=headers, json=json)

        return await request_with_retries(
            request_fn,
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
        )
