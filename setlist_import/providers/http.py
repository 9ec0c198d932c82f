"""HTTP status mapping shared by the httpx-based providers.

Translates an upstream response into the error hierarchy so that
``retry_async`` and the circuit breaker react uniformly:

* 2xx        -> returned to the caller
* 404        -> ``None`` (caller decides what "not found" means)
* 429        -> :class:`RateLimitError` (retryable, honours Retry-After)
* 5xx        -> :class:`TransientProviderError` (retryable)
* other 4xx  -> :class:`ProviderError` (not retried)

Transport failures (timeouts, resets) become ``TransientProviderError``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from setlist_import.utils.errors import ProviderError, RateLimitError, TransientProviderError


def _retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def json_or_none(response: httpx.Response, provider: str) -> dict[str, Any] | None:
    """Return the decoded body, ``None`` on 404, or raise a mapped error."""
    status = response.status_code
    if 200 <= status < 300:
        return response.json()
    if status == 404:
        return None
    if status == 429:
        raise RateLimitError(provider_name=provider, retry_after=_retry_after(response))
    if status >= 500:
        raise TransientProviderError(
            message=f"Upstream returned {status}",
            provider_name=provider,
            status_code=status,
        )
    raise ProviderError(
        message=f"Upstream returned {status}",
        provider_name=provider,
        status_code=status,
    )


async def send(
    call: Callable[[], Awaitable[httpx.Response]], provider: str
) -> httpx.Response:
    """Await an httpx call, turning transport errors into transient ones."""
    try:
        return await call()
    except httpx.TimeoutException as exc:
        raise TransientProviderError(
            message=f"Request timed out: {exc}", provider_name=provider
        ) from exc
    except httpx.TransportError as exc:
        raise TransientProviderError(
            message=f"Transport error: {exc}", provider_name=provider
        ) from exc
