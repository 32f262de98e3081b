"""
Museum collection service for the Museum Access Layer.
"""

import asyncio
from typing import Dict, Optional

import httpx
from fastapi import FastAPI, Query

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.retry import RetryConfig

from service_museum.app.adapters.met_client import MetCollectionClient
from service_museum.app.caching.ttl_cache import TTLCache
from service_museum.app.collection.service import CollectionService
from service_museum.app.dispatch.scheduler import DispatchScheduler
from service_museum.app.mediation.facade import MediationFacade
from service_museum.app.mediation.retry_controller import RetryController


class MuseumService(BaseService):
    """Collection API intermediary: cached, rate-limited, retried."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__("museum", config or get_config("museum"))
        cfg = self.config

        self.cache = TTLCache(default_ttl=cfg.cache_ttl_seconds)
        self._purge_task: Optional["asyncio.Task[None]"] = None
        self.scheduler = DispatchScheduler(
            concurrency=cfg.scheduler_concurrency,
            interval_cap=cfg.scheduler_interval_cap,
            interval=cfg.scheduler_interval_seconds,
            timeout=cfg.scheduler_timeout_seconds,
            metrics=self.metrics,
        )
        self.met_client = MetCollectionClient(
            cfg.met_api_base_url,
            timeout=cfg.upstream_timeout_seconds,
            headers={"Accept": cfg.upstream_accept, "User-Agent": cfg.upstream_user_agent},
            verify=cfg.upstream_verify_tls,
            transport=upstream_transport,
            metrics=self.metrics,
        )
        self.retry_controller = RetryController(
            self.met_client,
            self.scheduler,
            forbidden_policy=RetryConfig(
                max_attempts=cfg.retry_forbidden_max_attempts,
                base_delay=cfg.retry_base_delay_seconds,
                jitter=cfg.retry_jitter_seconds,
                backoff_strategy="exponential",
            ),
            network_policy=RetryConfig(
                max_attempts=cfg.retry_network_max_attempts,
                base_delay=cfg.retry_network_delay_seconds,
                jitter=0.0,
                backoff_strategy="fixed",
            ),
            metrics=self.metrics,
        )
        self.facade = MediationFacade(
            self.cache,
            self.retry_controller,
            ttl=cfg.cache_ttl_seconds,
            coalesce=cfg.coalesce_requests,
            metrics=self.metrics,
        )
        self.collection = CollectionService(
            self.facade,
            default_image_query=cfg.default_image_query,
            department_search_query=cfg.department_search_query,
        )

        self._setup_collection_routes()
        self.app.state.museum_service = self

    async def startup(self) -> None:
        self._purge_task = asyncio.create_task(self._purge_expired_loop())
        self.logger.info(
            "Museum service starting",
            port=self.port,
            met_api_base_url=self.config.met_api_base_url,
        )

    async def shutdown(self) -> None:
        if self._purge_task is not None:
            self._purge_task.cancel()
            try:
                await self._purge_task
            except asyncio.CancelledError:
                pass
            self._purge_task = None
        await self.scheduler.close()
        await self.met_client.close()
        self.cache.clear()
        self.logger.info("Museum service stopped")

    async def _purge_expired_loop(self) -> None:
        """Sweep expired cache entries every check period."""
        period = self.config.cache_check_period_seconds
        while True:
            await asyncio.sleep(period)
            self.cache.purge_expired()

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"scheduler": "closed" if self.scheduler.closed else "ok"}

    def _setup_collection_routes(self):
        """Register collection routes. Search routes precede /{objectID}."""

        @self.app.get("/api/artworks/search/images")
        async def search_images(q: Optional[str] = Query(None)):
            """Object IDs of works with images."""
            return await self.collection.search_with_images(q)

        @self.app.get("/api/artworks/search/artist")
        async def search_artist(q: Optional[str] = Query(None)):
            """Object records by artist or culture."""
            return await self.collection.search_by_artist(q)

        @self.app.get("/api/artworks/search/department")
        async def search_department(department_id: Optional[str] = Query(None, alias="departmentId")):
            """Object records by department."""
            return await self.collection.search_by_department(department_id)

        @self.app.get("/api/artworks/{object_id}")
        async def get_artwork(object_id: str):
            """Object detail."""
            return await self.collection.get_object(object_id)

        @self.app.get("/api/departments")
        async def list_departments():
            """Department listing."""
            return await self.collection.list_departments()

        @self.app.get("/api/status")
        async def status():
            """Scheduler and cache state."""
            return {
                "service": self.service_name,
                "scheduler": self.scheduler.stats(),
                "mediation": self.facade.stats(),
            }


def create_app(config: Optional[ServiceConfig] = None) -> FastAPI:
    """Create FastAPI application."""
    service = MuseumService(config)
    return service.app


if __name__ == "__main__":
    service = MuseumService()
    service.run()
