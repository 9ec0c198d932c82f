"""Event-ticketing providers."""

from setlist_import.providers.ticketing.ticketmaster_provider import TicketmasterProvider

__all__ = ["TicketmasterProvider"]
