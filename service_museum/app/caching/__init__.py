"""
Museum caching package.

Memory-resident TTL cache for upstream payloads. Entries are lost on restart
and invalidated only by expiry or explicit purge.
"""

from .ttl_cache import CacheEntry, TTLCache, DEFAULT_TTL_SECONDS

__all__ = ["CacheEntry", "TTLCache", "DEFAULT_TTL_SECONDS"]
