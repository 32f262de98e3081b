"""
Bounded retry policy around the upstream client.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TYPE_CHECKING

from shared.errors import AccessForbiddenError, MediationError, NetworkError, UpstreamHttpError
from shared.logging import get_logger
from shared.retry import RetryConfig, calculate_delay

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from service_museum.app.adapters.met_client import MetCollectionClient
    from service_museum.app.dispatch.scheduler import DispatchScheduler
    from shared.metrics import MetricsCollector


FORBIDDEN_STATUS = 403


def default_forbidden_policy() -> RetryConfig:
    return RetryConfig(max_attempts=3, base_delay=2.0, jitter=1.0, backoff_strategy="exponential")


def default_network_policy() -> RetryConfig:
    return RetryConfig(max_attempts=1, base_delay=0.5, jitter=0.0, backoff_strategy="fixed")


@dataclass
class RetryState:
    """Progress of one logical request through the retry loop."""

    attempt: int = 0
    forbidden_retries: int = 0
    network_retries: int = 0
    last_error: Optional[MediationError] = None


class RetryController:
    """Runs upstream fetches with a per-error-class retry budget.

    A 403 from this upstream usually means short-lived IP throttling, so it is
    retried with exponential backoff and jitter; once its budget is spent the
    request fails with ``AccessForbiddenError``. Network failures get a smaller
    budget and a fixed delay. Everything else fails immediately.

    When a scheduler is given, every attempt is a separate admission and the
    backoff sleep happens outside any slot.
    """

    def __init__(
        self,
        client: "MetCollectionClient",
        scheduler: Optional["DispatchScheduler"] = None,
        *,
        forbidden_policy: Optional[RetryConfig] = None,
        network_policy: Optional[RetryConfig] = None,
        metrics: Optional["MetricsCollector"] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
    ):
        self.client = client
        self.scheduler = scheduler
        self.forbidden_policy = forbidden_policy or default_forbidden_policy()
        self.network_policy = network_policy or default_network_policy()
        self.metrics = metrics
        self._sleep = sleep
        self._uniform = uniform
        self.logger = get_logger("museum.retry")

        if self.network_policy.max_attempts > self.forbidden_policy.max_attempts:
            self.logger.warning(
                "Network retry budget exceeds the 403 budget",
                network_max_attempts=self.network_policy.max_attempts,
                forbidden_max_attempts=self.forbidden_policy.max_attempts,
            )

    async def _attempt(self, path: str) -> Any:
        if self.scheduler is None:
            return await self.client.fetch(path)
        return await self.scheduler.submit(lambda: self.client.fetch(path))

    async def fetch_with_retry(self, path: str, max_attempts: Optional[int] = None) -> Any:
        """Fetch ``path``, retrying 403s up to ``max_attempts`` times."""
        forbidden_budget = self.forbidden_policy.max_attempts if max_attempts is None else max_attempts
        state = RetryState()

        while True:
            state.attempt += 1
            try:
                result = await self._attempt(path)
            except UpstreamHttpError as exc:
                if exc.status != FORBIDDEN_STATUS:
                    raise
                state.last_error = exc
                self.logger.warning("Upstream answered 403, possible throttling", path=path, attempt=state.attempt)
                if state.forbidden_retries >= forbidden_budget:
                    self.logger.error("Retry budget for 403 exhausted", path=path, attempts=state.attempt)
                    raise AccessForbiddenError(path, state.attempt) from exc
                delay = calculate_delay(state.forbidden_retries, self.forbidden_policy, self._uniform)
                state.forbidden_retries += 1
                reason = "forbidden"
            except NetworkError as exc:
                state.last_error = exc
                if state.network_retries >= self.network_policy.max_attempts:
                    self.logger.error("Retry budget for network errors exhausted", path=path, kind=exc.kind.value, attempts=state.attempt)
                    raise
                delay = calculate_delay(state.network_retries, self.network_policy, self._uniform)
                state.network_retries += 1
                reason = f"network_{exc.kind.value}"
            else:
                if state.attempt > 1:
                    self.logger.info("Retry succeeded", path=path, attempt=state.attempt)
                return result

            if self.metrics:
                self.metrics.increment_counter("upstream_retries_total", reason=reason)
            self.logger.info(
                "Retrying upstream request",
                path=path,
                next_attempt=state.attempt + 1,
                reason=reason,
                delay_ms=round(delay * 1000),
            )
            await self._sleep(delay)
