"""
Backoff policies for resilient upstream calls.
"""

import random
from typing import Callable, Optional


class RetryConfig:
    """Configuration for retry behavior of one error class."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 2.0,
                 max_delay: Optional[float] = None,
                 exponential_base: float = 2.0,
                 jitter: float = 1.0,
                 backoff_strategy: str = "exponential"):
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy

    def __repr__(self) -> str:
        return (
            f"RetryConfig(max_attempts={self.max_attempts}, base_delay={self.base_delay}, "
            f"jitter={self.jitter}, backoff_strategy={self.backoff_strategy!r})"
        )


def calculate_delay(retry_number: int, config: RetryConfig,
                    uniform: Callable[[float, float], float] = random.uniform) -> float:
    """Calculate the wait before retry ``retry_number`` (0-based).

    Exponential: ``base * exponential_base ** n + uniform(0, jitter)``.
    Fixed: ``base + uniform(0, jitter)``.
    """
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** retry_number)
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * (retry_number + 1)
    elif config.backoff_strategy == "fixed":
        delay = config.base_delay
    else:
        raise ValueError(f"Unknown backoff strategy: {config.backoff_strategy}")

    if config.max_delay is not None:
        delay = min(delay, config.max_delay)

    if config.jitter > 0:
        delay += uniform(0.0, config.jitter)

    return max(0.0, delay)
