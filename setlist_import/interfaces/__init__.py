"""Abstract interfaces for every external collaborator of the import pipeline.

Business logic only talks to these ABCs; concrete adapters live in
``setlist_import.providers`` and are wired together in ``main.py``.

    Interface             ->  Concrete implementation
    ─────────────────────────────────────────────────────────
    ITicketingProvider    ->  TicketmasterProvider
    IMetadataProvider     ->  SpotifyProvider
    ICanonicalStore       ->  SQLiteCanonicalStore
    IProgressStore        ->  SQLiteCanonicalStore
    ICacheProvider        ->  MemoryCacheProvider
    ICacheInvalidator     ->  MemoryCacheProvider
"""

from setlist_import.interfaces.cache_provider import ICacheInvalidator, ICacheProvider
from setlist_import.interfaces.metadata_provider import IMetadataProvider
from setlist_import.interfaces.store_provider import ICanonicalStore, IProgressStore
from setlist_import.interfaces.ticketing_provider import ITicketingProvider

__all__ = [
    "ICacheInvalidator",
    "ICacheProvider",
    "ICanonicalStore",
    "IMetadataProvider",
    "IProgressStore",
    "ITicketingProvider",
]
