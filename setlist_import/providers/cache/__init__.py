"""Cache providers.

MemoryCacheProvider is a TTL cache local to the process.  It caches batch
optimizer results and is invalidated per artist after each import.
"""

from setlist_import.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
