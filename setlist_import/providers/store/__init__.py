"""Canonical store adapters."""

from setlist_import.providers.store.sqlite_store import SQLiteCanonicalStore

__all__ = ["SQLiteCanonicalStore"]
