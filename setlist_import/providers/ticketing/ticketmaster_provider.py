"""Ticketmaster Discovery API adapter.

Endpoints used:

* ``GET /discovery/v2/attractions/{id}.json``  -- performer lookup
* ``GET /discovery/v2/events.json?attractionId=..&size=200&page=N&sort=date,asc``

Events arrive under ``_embedded.events`` with ``page.totalPages``; pages are
0-indexed.  A 404 means "no such attraction / no events" rather than an
error.  Requests are spaced by ``request_delay`` (Ticketmaster allows ~5
requests per second) and retried through :func:`retry_async`.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from typing import Any

import httpx

from setlist_import.interfaces.ticketing_provider import ITicketingProvider
from setlist_import.models.external import ExternalAttraction, ExternalEvent
from setlist_import.pipeline.circuit_breaker import CircuitBreaker
from setlist_import.providers.http import json_or_none, send
from setlist_import.utils.errors import ConfigurationError
from setlist_import.utils.logging import get_logger
from setlist_import.utils.retry import RetryPolicy, retry_async

_BASE_URL = "https://app.ticketmaster.com/discovery/v2"
_PAGE_SIZE = 200
_REQUEST_DELAY = 0.2
_PROVIDER = "ticketmaster"


class TicketmasterProvider(ITicketingProvider):
    """Looks up attractions and pages their events.

    Parameters
    ----------
    http_client:
        Injected ``httpx.AsyncClient`` for connection pooling and tests.
    api_key:
        Ticketmaster consumer key.
    retry_policy:
        Backoff parameters for transient failures.
    breaker:
        Optional circuit breaker shared with the batch optimizer.
    request_delay:
        Minimum seconds between requests.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        retry_policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        request_delay: float = _REQUEST_DELAY,
        base_url: str = _BASE_URL,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self._retry_policy = retry_policy or RetryPolicy(
            max_retries=2, backoff_multiplier=3, initial_delay_ms=2000
        )
        self._breaker = breaker
        self._request_delay = request_delay
        self._base_url = base_url.rstrip("/")
        self._last_request_time: float = 0.0
        self._throttle_lock = asyncio.Lock()
        self._logger = get_logger(__name__)

    def get_provider_name(self) -> str:
        return _PROVIDER

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _throttle(self) -> None:
        """Enforce minimum delay between requests."""
        async with self._throttle_lock:
            elapsed = time.monotonic() - self._last_request_time
            if self._last_request_time > 0 and elapsed < self._request_delay:
                await asyncio.sleep(self._request_delay - elapsed)
            self._last_request_time = time.monotonic()

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any] | None:
        if not self._api_key:
            raise ConfigurationError(
                message="TICKETMASTER_API_KEY is not set", provider_name=_PROVIDER
            )

        async def _once() -> dict[str, Any] | None:
            await self._throttle()
            response = await send(
                lambda: self._http.get(
                    f"{self._base_url}{path}",
                    params={**params, "apikey": self._api_key},
                    timeout=30.0,
                ),
                _PROVIDER,
            )
            return json_or_none(response, _PROVIDER)

        async def _guarded() -> dict[str, Any] | None:
            if self._breaker is None:
                return await _once()
            return await self._breaker.call(_once)

        return await retry_async(
            _guarded, self._retry_policy, operation=f"{_PROVIDER}{path}", logger=self._logger
        )

    # ------------------------------------------------------------------
    # ITicketingProvider implementation
    # ------------------------------------------------------------------

    async def get_attraction(self, attraction_id: str) -> ExternalAttraction | None:
        data = await self._get(f"/attractions/{attraction_id}.json", {})
        if data is None:
            self._logger.info("ticketmaster_attraction_not_found", attraction_id=attraction_id)
            return None
        return ExternalAttraction.from_api(data)

    async def fetch_events_page(
        self, attraction_id: str, page: int = 0
    ) -> tuple[list[ExternalEvent], int]:
        """Fetch one page of events.

        Returns
        -------
        tuple[list[ExternalEvent], int]
            Parsed events on the page, and ``totalPages`` (0 when unknown).
        """
        data = await self._get(
            "/events.json",
            {
                "attractionId": attraction_id,
                "size": _PAGE_SIZE,
                "page": page,
                "sort": "date,asc",
            },
        )
        if data is None:
            return [], 0

        total_pages = int((data.get("page") or {}).get("totalPages") or 0)
        events: list[ExternalEvent] = []
        for item in (data.get("_embedded") or {}).get("events") or []:
            try:
                events.append(ExternalEvent.from_api(item))
            except Exception:
                self._logger.warning(
                    "ticketmaster_event_parse_failed",
                    event_data=str(item)[:200],
                )

        self._logger.debug(
            "ticketmaster_page_fetched",
            attraction_id=attraction_id,
            page=page,
            events_on_page=len(events),
            total_pages=total_pages,
        )
        return events, total_pages

    async def iterate_events(self, attraction_id: str) -> AsyncIterator[list[ExternalEvent]]:
        page = 0
        while True:
            events, total_pages = await self.fetch_events_page(attraction_id, page)
            if events:
                yield events
            page += 1
            if page >= total_pages:
                return
