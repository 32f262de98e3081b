"""
Unit tests for the museum service routes.
"""

import time
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from service_museum.app.main import MuseumService, create_app
from shared.config import ServiceConfig
from shared.errors import (
    AccessForbiddenError,
    NetworkError,
    NetworkErrorKind,
    SchedulerTimeoutError,
    UpstreamHttpError,
)


class TestMuseumService:
    """Test cases for MuseumService."""

    @pytest.fixture
    def config(self):
        return ServiceConfig(
            service_name="museum",
            met_api_base_url="https://collectionapi.example.org",
            scheduler_concurrency=4,
            scheduler_interval_cap=70,
            scheduler_interval_seconds=1.0,
            scheduler_timeout_seconds=10.0,
        )

    @pytest.fixture
    def service(self, config):
        return MuseumService(config)

    @pytest.fixture
    def client(self, service):
        with TestClient(service.app) as client:
            yield client

    def test_components_follow_config(self, service):
        """Test scheduler and cache are built from settings."""
        assert service.scheduler.concurrency == 4
        assert service.scheduler.interval_cap == 70
        assert service.scheduler.timeout == 10.0
        assert service.cache.default_ttl == 3600
        assert service.met_client.base_url == "https://collectionapi.example.org"
        assert service.facade.coalesce is False

    def test_create_app(self, config):
        """Test the app factory exposes the service on app state."""
        app = create_app(config)
        assert isinstance(app.state.museum_service, MuseumService)

    def test_health_endpoint(self, client):
        """Test health endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "museum"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"scheduler": "ok"}

    def test_status_endpoint(self, client):
        """Test scheduler and cache stats are exposed."""
        response = client.get("/api/status")
        assert response.status_code == 200
        data = response.json()
        assert data["scheduler"]["concurrency"] == 4
        assert data["mediation"]["cache"]["keys"] == 0

    def test_metrics_endpoint(self, client):
        """Test Prometheus exposition."""
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "scheduler_queue_depth" in response.text

    def test_search_images_route(self, client, service):
        """Test the images search returns object IDs with the default query."""
        with patch.object(service.facade, "fetch_with_mediation", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = {"total": 2, "objectIDs": [436535, 437133]}

            response = client.get("/api/artworks/search/images")

            assert response.status_code == 200
            assert response.json() == [436535, 437133]
            mock_fetch.assert_awaited_once_with(
                "/public/collection/v1/search?hasImages=true&q=painting",
                "search-images-painting",
            )

    def test_object_detail_route(self, client, service):
        """Test object detail route."""
        with patch.object(service.facade, "fetch_with_mediation", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = {"objectID": 1, "title": "X"}

            response = client.get("/api/artworks/1")

            assert response.status_code == 200
            assert response.json() == {"objectID": 1, "title": "X"}
            mock_fetch.assert_awaited_once_with("/public/collection/v1/objects/1", "object-detail-1")

    def test_object_detail_rejects_non_numeric(self, client):
        """Test invalid IDs map to 400."""
        response = client.get("/api/artworks/not-a-number")
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_artist_search_requires_q(self, client):
        """Test missing artist name returns 400."""
        response = client.get("/api/artworks/search/artist")
        assert response.status_code == 400
        assert response.json()["message"] == "Artist name (q) is required."

    def test_department_search_requires_id(self, client):
        """Test missing departmentId returns 400."""
        response = client.get("/api/artworks/search/department")
        assert response.status_code == 400

    def test_department_search_route(self, client, service):
        """Test department fan-out through the route."""
        payloads = {
            "search-department-11": {"objectIDs": [5, 6]},
            "object-detail-5": {"objectID": 5},
            "object-detail-6": UpstreamHttpError(404, "/objects/6"),
        }

        async def fetch(path, cache_key):
            outcome = payloads[cache_key]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        with patch.object(service.facade, "fetch_with_mediation", side_effect=fetch):
            response = client.get("/api/artworks/search/department", params={"departmentId": "11"})

        assert response.status_code == 200
        assert response.json() == [{"objectID": 5}]

    def test_departments_route(self, client, service):
        """Test departments listing."""
        departments = [{"departmentId": 1, "displayName": "American Decorative Arts"}]
        with patch.object(service.facade, "fetch_with_mediation", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = {"departments": departments}

            response = client.get("/api/departments")

        assert response.status_code == 200
        assert response.json() == departments

    @pytest.mark.parametrize("error, status, code", [
        (AccessForbiddenError("/objects/1", attempts=4), 403, "ACCESS_FORBIDDEN"),
        (UpstreamHttpError(404, "/objects/1"), 404, "UPSTREAM_HTTP_ERROR"),
        (NetworkError(NetworkErrorKind.DNS, "/objects/1"), 502, "NETWORK_ERROR"),
        (NetworkError(NetworkErrorKind.TIMEOUT, "/objects/1"), 504, "NETWORK_ERROR"),
        (SchedulerTimeoutError(30.0), 504, "SCHEDULER_TIMEOUT"),
    ])
    def test_errors_map_to_status(self, client, service, error, status, code):
        """Test typed errors choose the HTTP status."""
        with patch.object(service.facade, "fetch_with_mediation", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.side_effect = error

            response = client.get("/api/artworks/1", headers={"X-Request-ID": "req-1"})

        assert response.status_code == status
        body = response.json()
        assert body["code"] == code
        assert body["request_id"] == "req-1"
        assert response.headers["X-Request-ID"] == "req-1"

    def test_shutdown_closes_scheduler(self, service):
        """Test the lifespan shutdown hook closes the scheduler."""
        with TestClient(service.app) as client:
            client.get("/health")
        assert service.scheduler.closed is True

    def test_expired_entries_swept_without_reads(self, config):
        """Test the periodic sweep evicts entries nobody reads again."""
        config.cache_check_period_seconds = 0.05
        service = MuseumService(config)

        with TestClient(service.app):
            service.cache.set("search-artist-once", {"objectIDs": [1]}, ttl=0.01)
            service.cache.set("departments", {"departments": []})
            time.sleep(0.3)
            stats = service.cache.stats()

        assert stats["keys"] == 1
        assert stats["evictions"] == 1
        assert service._purge_task is None

    def test_unexpected_error_body_carries_request_id(self, service):
        """Test unhandled failures return a 500 body with the request id."""
        with TestClient(service.app, raise_server_exceptions=False) as client:
            with patch.object(service.facade, "fetch_with_mediation", new_callable=AsyncMock) as mock_fetch:
                mock_fetch.side_effect = RuntimeError("boom")

                response = client.get("/api/artworks/1", headers={"X-Request-ID": "req-500"})

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "INTERNAL_ERROR"
        assert body["request_id"] == "req-500"
        assert response.headers["X-Request-ID"] == "req-500"
