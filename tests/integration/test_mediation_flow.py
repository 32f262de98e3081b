"""
End-to-end tests for the mediated request flow against a mocked collection API.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from service_museum.app.main import MuseumService
from shared.config import ServiceConfig


class UpstreamStub:
    """Scripted collection API: per-path lists of (status, payload) responses."""

    def __init__(self, script):
        self.script = {path: list(responses) for path, responses in script.items()}
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.raw_path.decode()
        self.calls.append(path)
        responses = self.script.get(path)
        if not responses:
            return httpx.Response(404, json={"message": "Not a valid object"})
        status, payload = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(payload, Exception):
            raise payload
        return httpx.Response(status, json=payload)


class TestMediationFlow:
    """Integration tests for routes, mediation and the upstream client together."""

    @pytest.fixture
    def config(self):
        return ServiceConfig(
            service_name="museum",
            met_api_base_url="https://collectionapi.example.org",
            retry_base_delay_seconds=0.01,
            retry_jitter_seconds=0.0,
            retry_network_delay_seconds=0.01,
            scheduler_interval_seconds=0.2,
        )

    def make_client(self, config, stub):
        service = MuseumService(config, upstream_transport=httpx.MockTransport(stub))
        return service, TestClient(service.app)

    def test_second_call_served_from_cache(self, config):
        stub = UpstreamStub({
            "/public/collection/v1/objects/436535": [(200, {"objectID": 436535, "title": "Wheat Field"})],
        })
        service, client = self.make_client(config, stub)

        with client:
            first = client.get("/api/artworks/436535")
            second = client.get("/api/artworks/436535")

        assert first.status_code == 200
        assert second.json() == first.json()
        assert stub.calls == ["/public/collection/v1/objects/436535"]
        assert service.metrics.get_counter_value("cache_hits_total", cache_type="upstream") == 1.0

    def test_forbidden_then_success(self, config):
        stub = UpstreamStub({
            "/public/collection/v1/departments": [
                (403, {"message": "Forbidden"}),
                (403, {"message": "Forbidden"}),
                (200, {"departments": [{"departmentId": 1, "displayName": "Arms and Armor"}]}),
            ],
        })
        service, client = self.make_client(config, stub)

        with client:
            response = client.get("/api/departments")

        assert response.status_code == 200
        assert response.json() == [{"departmentId": 1, "displayName": "Arms and Armor"}]
        assert len(stub.calls) == 3
        assert service.metrics.get_counter_value("upstream_retries_total", reason="forbidden") == 2.0

    def test_persistent_forbidden_exhausts_budget(self, config):
        stub = UpstreamStub({"/public/collection/v1/objects/1": [(403, {"message": "Forbidden"})]})
        service, client = self.make_client(config, stub)

        with client:
            response = client.get("/api/artworks/1", headers={"X-Request-ID": "flow-1"})
            cached = "object-detail-1" in service.cache

        assert response.status_code == 403
        body = response.json()
        assert body["code"] == "ACCESS_FORBIDDEN"
        assert body["details"]["attempts"] == 4
        assert body["request_id"] == "flow-1"
        assert len(stub.calls) == 4
        assert cached is False

    def test_not_found_is_not_retried(self, config):
        stub = UpstreamStub({})
        _, client = self.make_client(config, stub)

        with client:
            response = client.get("/api/artworks/999")

        assert response.status_code == 404
        assert response.json()["code"] == "UPSTREAM_HTTP_ERROR"
        assert len(stub.calls) == 1

    def test_network_error_retried_once(self, config):
        stub = UpstreamStub({
            "/public/collection/v1/objects/7": [(0, httpx.ConnectError("Connection reset by peer"))],
        })
        _, client = self.make_client(config, stub)

        with client:
            response = client.get("/api/artworks/7")

        assert response.status_code == 502
        assert response.json()["details"]["kind"] == "connection_reset"
        assert len(stub.calls) == 2

    def test_artist_search_fan_out(self, config):
        stub = UpstreamStub({
            "/public/collection/v1/search?artistOrCulture=true&q=Monet": [(200, {"total": 2, "objectIDs": [10, 20]})],
            "/public/collection/v1/objects/10": [(200, {"objectID": 10})],
        })
        _, client = self.make_client(config, stub)

        with client:
            response = client.get("/api/artworks/search/artist", params={"q": "Monet"})

        assert response.status_code == 200
        assert response.json() == [{"objectID": 10}]
