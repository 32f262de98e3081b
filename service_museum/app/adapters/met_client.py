"""
HTTP client for the Met Collection API.
"""

import socket
import time
from typing import Any, Dict, Optional, TYPE_CHECKING

import httpx

from shared.errors import NetworkError, NetworkErrorKind, UpstreamError, UpstreamHttpError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "Met-Museum-Backend/1.0.0",
}

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated",
)


class MetCollectionClient:
    """Performs single GETs against the collection API and classifies outcomes.

    The client keeps one ``httpx.AsyncClient`` for its lifetime so that
    connections are reused. It never retries and never interprets status
    codes beyond raising ``UpstreamHttpError``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        headers: Optional[Dict[str, str]] = None,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}
        self.metrics = metrics
        self.logger = get_logger("museum.upstream")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=self.headers,
            verify=verify,
            transport=transport,
        )

    async def fetch(self, path: str) -> Any:
        """GET ``path`` and return the decoded JSON body."""
        self.logger.debug("Fetching from upstream", path=path)
        start = time.perf_counter()
        try:
            response = await self._client.get(path)
        except httpx.TimeoutException as exc:
            self._record("timeout", start)
            raise NetworkError(NetworkErrorKind.TIMEOUT, path, str(exc)) from exc
        except httpx.ConnectError as exc:
            kind = NetworkErrorKind.DNS if _is_dns_failure(exc) else NetworkErrorKind.CONNECTION_RESET
            self._record(kind.value, start)
            raise NetworkError(kind, path, str(exc)) from exc
        except (httpx.NetworkError, httpx.RemoteProtocolError) as exc:
            self._record("connection_reset", start)
            raise NetworkError(NetworkErrorKind.CONNECTION_RESET, path, str(exc)) from exc
        except httpx.HTTPError as exc:
            self._record("error", start)
            raise UpstreamError(f"Upstream request failed: {exc}", {"path": path}) from exc

        if not response.is_success:
            self._record(f"http_{response.status_code}", start)
            self.logger.error(
                "Upstream request failed",
                path=path,
                status_code=response.status_code,
            )
            raise UpstreamHttpError(response.status_code, path, response.text)

        try:
            payload = response.json()
        except ValueError as exc:
            self._record("malformed", start)
            raise UpstreamError(
                "Upstream returned a body that is not JSON",
                {"path": path, "content_type": response.headers.get("content-type")},
            ) from exc

        self._record("success", start)
        return payload

    def _record(self, outcome: str, start: float) -> None:
        if self.metrics:
            self.metrics.increment_counter("upstream_requests_total", outcome=outcome)
            self.metrics.observe_histogram("upstream_request_duration_seconds", time.perf_counter() - start)

    async def close(self) -> None:
        """Release pooled connections."""
        await self._client.aclose()


def _is_dns_failure(exc: BaseException) -> bool:
    """Walk the exception chain looking for a resolver failure."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return True
        if any(marker in str(current).lower() for marker in _DNS_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False
