"""setlist-import: artist import pipeline for shows, venues and studio catalogs."""

__version__ = "0.1.0"
