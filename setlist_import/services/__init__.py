"""Phase services run by the import orchestrator."""

from setlist_import.services.catalog_ingest import CatalogIngestService
from setlist_import.services.setlist_preseeder import SetlistPreseeder
from setlist_import.services.shows_ingest import ShowsIngestService
from setlist_import.services.wrap_up import WrapUpService

__all__ = [
    "CatalogIngestService",
    "SetlistPreseeder",
    "ShowsIngestService",
    "WrapUpService",
]
