"""Abstract base class for event-ticketing providers.

The concrete adapter (Ticketmaster Discovery API) lives in
``setlist_import/providers/ticketing/``.  Results are typed
:mod:`setlist_import.models.external` records; malformed upstream items
never cross this boundary.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from setlist_import.models.external import ExternalAttraction, ExternalEvent


class ITicketingProvider(ABC):
    """Contract for looking up performers and their events."""

    @abstractmethod
    async def get_attraction(self, attraction_id: str) -> ExternalAttraction | None:
        """Fetch a performer by the provider's attraction id.

        Returns
        -------
        ExternalAttraction or None
            ``None`` when the provider does not know the id.
        """

    @abstractmethod
    def iterate_events(self, attraction_id: str) -> AsyncIterator[list[ExternalEvent]]:
        """Yield the attraction's events one page at a time.

        The sequence is lazy and finite.  It is consumed once per run and
        cannot resume mid-page.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"ticketmaster"``."""
