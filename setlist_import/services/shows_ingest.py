"""Shows & venues ingest: ticketing events into canonical venues and shows.

Venues are written strictly before shows.  Every show's ``venue_id`` is
resolved through the ``provider venue id -> internal id`` map built while
upserting venues, so a venue that failed to persist takes its shows down
with it (recorded as errors) instead of leaving a show with a dangling or
null foreign key.
"""

from __future__ import annotations

from datetime import date

import structlog

from setlist_import.interfaces.store_provider import ICanonicalStore
from setlist_import.interfaces.ticketing_provider import ITicketingProvider
from setlist_import.models.canonical import CanonicalShow, CanonicalVenue
from setlist_import.models.external import ExternalEvent, ExternalVenue
from setlist_import.models.results import IngestError, ShowsIngestResult
from setlist_import.utils.concurrency import process_batch
from setlist_import.utils.logging import get_logger
from setlist_import.utils.text import slugify


def _to_cents(amount: float | None) -> int | None:
    return None if amount is None else int(round(amount * 100))


def to_canonical_venue(venue: ExternalVenue) -> CanonicalVenue:
    return CanonicalVenue(
        tm_venue_id=venue.venue_id,
        name=venue.name,
        slug=slugify(f"{venue.name} {venue.city}"),
        address=venue.address,
        city=venue.city,
        state=venue.state,
        country=venue.country,
        postal_code=venue.postal_code,
        latitude=venue.latitude,
        longitude=venue.longitude,
        timezone=venue.timezone,
    )


def to_canonical_show(event: ExternalEvent, artist_id: int, venue_id: int) -> CanonicalShow:
    name = event.name or "Show"
    day: date | None = event.local_date
    return CanonicalShow(
        tm_event_id=event.event_id,
        headliner_artist_id=artist_id,
        venue_id=venue_id,
        name=name,
        slug=slugify(f"{name} {day.isoformat() if day else ''}") or None,
        date=day,
        start_time=event.local_time,
        status="upcoming",
        ticket_url=event.url,
        min_price=_to_cents(event.min_price),
        max_price=_to_cents(event.max_price),
        currency=event.currency,
    )


class ShowsIngestService:
    """Pages an attraction's events and upserts their venues and shows.

    Parameters
    ----------
    ticketing:
        Event source.
    store:
        Canonical store.
    venue_concurrency:
        Maximum concurrent venue (and show) upserts.
    """

    def __init__(
        self,
        ticketing: ITicketingProvider,
        store: ICanonicalStore,
        venue_concurrency: int = 5,
    ) -> None:
        self._ticketing = ticketing
        self._store = store
        self._venue_concurrency = venue_concurrency
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def ingest(self, artist_id: int, attraction_id: str) -> ShowsIngestResult:
        """Import every event for *attraction_id* headlined by *artist_id*.

        Item-level failures land in ``result.errors``; only a failure to
        page events at all propagates.
        """
        result = ShowsIngestResult()

        events = await self._collect_events(attraction_id)
        self._logger.info(
            "shows_ingest_events_collected", attraction_id=attraction_id, events=len(events)
        )

        venues: dict[str, ExternalVenue] = {}
        for event in events:
            if event.venue is not None and event.venue.venue_id not in venues:
                venues[event.venue.venue_id] = event.venue

        venue_id_map = await self._upsert_venues(list(venues.values()), result)
        await self._upsert_shows(events, artist_id, venue_id_map, result)

        self._logger.info(
            "shows_ingest_complete",
            artist_id=artist_id,
            venues_processed=result.venues_processed,
            shows_processed=result.shows_processed,
            new_venues=result.new_venues,
            new_shows=result.new_shows,
            errors=len(result.errors),
        )
        return result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _collect_events(self, attraction_id: str) -> list[ExternalEvent]:
        seen: set[str] = set()
        events: list[ExternalEvent] = []
        async for page in self._ticketing.iterate_events(attraction_id):
            for event in page:
                if event.event_id in seen:
                    continue
                seen.add(event.event_id)
                events.append(event)
        return events

    async def _upsert_venues(
        self, venues: list[ExternalVenue], result: ShowsIngestResult
    ) -> dict[str, int]:
        async def _one(venue: ExternalVenue) -> tuple[str, int, bool]:
            venue_id, created = await self._store.upsert_venue(to_canonical_venue(venue))
            return venue.venue_id, venue_id, created

        upserted, failures = await process_batch(
            venues,
            _one,
            concurrency=self._venue_concurrency,
            logger=self._logger,
            label="venue_upsert_failed",
        )

        venue_id_map: dict[str, int] = {}
        for provider_id, internal_id, created in upserted:
            venue_id_map[provider_id] = internal_id
            result.venues_processed += 1
            if created:
                result.new_venues += 1
        for failure in failures:
            result.errors.append(
                IngestError(
                    type="venue",
                    message=str(failure.error),
                    item={"tm_venue_id": failure.item.venue_id, "name": failure.item.name},
                )
            )
        return venue_id_map

    async def _upsert_shows(
        self,
        events: list[ExternalEvent],
        artist_id: int,
        venue_id_map: dict[str, int],
        result: ShowsIngestResult,
    ) -> None:
        resolvable: list[tuple[ExternalEvent, int]] = []
        for event in events:
            venue_id = venue_id_map.get(event.venue.venue_id) if event.venue else None
            if venue_id is None:
                result.errors.append(
                    IngestError(
                        type="show",
                        message="Venue not persisted; show skipped",
                        item={
                            "tm_event_id": event.event_id,
                            "tm_venue_id": event.venue.venue_id if event.venue else None,
                        },
                    )
                )
                continue
            resolvable.append((event, venue_id))

        async def _one(pair: tuple[ExternalEvent, int]) -> bool:
            event, venue_id = pair
            _, created = await self._store.upsert_show(
                to_canonical_show(event, artist_id, venue_id)
            )
            return created

        created_flags, failures = await process_batch(
            resolvable,
            _one,
            concurrency=self._venue_concurrency,
            logger=self._logger,
            label="show_upsert_failed",
        )
        result.shows_processed += len(created_flags)
        result.new_shows += sum(1 for created in created_flags if created)
        for failure in failures:
            result.errors.append(
                IngestError(
                    type="show",
                    message=str(failure.error),
                    item={"tm_event_id": failure.item[0].event_id},
                )
            )
