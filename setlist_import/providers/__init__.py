"""Concrete adapters for the interfaces in ``setlist_import.interfaces``."""
