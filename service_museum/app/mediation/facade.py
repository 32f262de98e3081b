"""
Single entry point for every upstream call: cache, then scheduled retries.
"""

import asyncio
from typing import Any, Dict, Optional, TYPE_CHECKING

from shared.logging import get_logger

from service_museum.app.caching.ttl_cache import TTLCache
from service_museum.app.mediation.retry_controller import RetryController

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


_MISSING = object()


def _retrieve_outcome(task: "asyncio.Future[Any]") -> None:
    """Mark a shared fetch's error as retrieved once every waiter has left."""
    if not task.cancelled():
        task.exception()


class MediationFacade:
    """Serves cached payloads and routes misses through the retry controller.

    Failures propagate unchanged and are never cached. Concurrent misses for
    one key each reach the upstream unless ``coalesce`` is enabled, in which
    case they share a single in-flight fetch.
    """

    def __init__(
        self,
        cache: TTLCache,
        retry_controller: RetryController,
        *,
        ttl: Optional[float] = None,
        coalesce: bool = False,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.cache = cache
        self.retry_controller = retry_controller
        self.ttl = ttl
        self.coalesce = coalesce
        self.metrics = metrics
        self.logger = get_logger("museum.mediation")
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}

    async def fetch_with_mediation(self, path: str, cache_key: str) -> Any:
        """Return the payload for ``path``, cached under ``cache_key``."""
        cached = self.cache.get(cache_key, _MISSING)
        if cached is not _MISSING:
            self.logger.debug("Cache hit", cache_key=cache_key)
            self._count("cache_hits_total")
            return cached

        self._count("cache_misses_total")

        if self.coalesce:
            pending = self._in_flight.get(cache_key)
            if pending is None:
                pending = asyncio.ensure_future(self._fetch_shared(path, cache_key))
                pending.add_done_callback(_retrieve_outcome)
                self._in_flight[cache_key] = pending
            else:
                self.logger.debug("Joining in-flight request", cache_key=cache_key)
            # cancelling one waiter leaves the shared fetch running for the others
            return await asyncio.shield(pending)

        return await self._fetch_and_store(path, cache_key)

    async def _fetch_and_store(self, path: str, cache_key: str) -> Any:
        self.logger.debug("Queueing upstream request", path=path, cache_key=cache_key)
        payload = await self.retry_controller.fetch_with_retry(path)
        self.cache.set(cache_key, payload, self.ttl)
        return payload

    async def _fetch_shared(self, path: str, cache_key: str) -> Any:
        try:
            return await self._fetch_and_store(path, cache_key)
        finally:
            self._in_flight.pop(cache_key, None)

    def _count(self, metric_name: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, cache_type="upstream")

    def stats(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.stats(),
            "in_flight": len(self._in_flight),
            "coalesce": self.coalesce,
        }
