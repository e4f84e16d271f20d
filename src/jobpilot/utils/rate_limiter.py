"""
Rate Limiting and Backpressure Utilities.

This module provides the three throttling mechanisms the pipeline uses:

- SourceRateLimiter: per-source sliding window (max requests per window plus a
  minimum delay between calls) applied by every source adapter.
- with_retry: bounded retry with exponential backoff and jitter, used only
  within a single fetch. A source that is still failing afterwards fails the
  discovery attempt and is retried on the next scheduled tick.
- ProviderLimiter: bounded concurrency per external provider (embedding,
  reasoning) so a burst of work queues up instead of fanning out.

Rate limit presets (requests per window, window, min delay):
    remoteok: 30 / 60s, 1.0s
    indeed:   20 / 60s, 2.0s
    mock:     1000 / 60s, 0s
    default:  60 / 60s, 0.5s
"""

import random
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional, Tuple, Type, TypeVar

from jobpilot.config.settings import (
    EMBEDDING_MAX_CONCURRENCY,
    REASONING_MAX_CONCURRENCY,
)
from jobpilot.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: float
    min_delay_seconds: float = 0.0


RATE_LIMIT_CONFIGS: Dict[str, RateLimitConfig] = {
    "remoteok": RateLimitConfig(
        max_requests=30, window_seconds=60, min_delay_seconds=1.0
    ),
    "indeed": RateLimitConfig(
        max_requests=20, window_seconds=60, min_delay_seconds=2.0
    ),
    "mock": RateLimitConfig(max_requests=1000, window_seconds=60),
    "default": RateLimitConfig(
        max_requests=60, window_seconds=60, min_delay_seconds=0.5
    ),
}


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int
    initial_delay: float
    max_delay: float
    jitter: float = 0.0


RETRY_CONFIGS: Dict[str, RetryConfig] = {
    "quick": RetryConfig(max_attempts=3, initial_delay=0.1, max_delay=1.0),
    "standard": RetryConfig(
        max_attempts=3, initial_delay=1.0, max_delay=10.0, jitter=0.2
    ),
    "aggressive": RetryConfig(max_attempts=5, initial_delay=0.5, max_delay=30.0),
}


class SourceRateLimiter:
    """Sliding-window rate limiter keyed by source.

    `wait_for_slot` sleeps outside the lock, so one throttled source never
    blocks callers of another.
    """

    def __init__(
        self,
        configs: Optional[Dict[str, RateLimitConfig]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.configs = configs or RATE_LIMIT_CONFIGS
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._calls: Dict[str, Deque[float]] = {}

    def config_for(self, key: str) -> RateLimitConfig:
        return self.configs.get(key, self.configs["default"])

    def wait_for_slot(self, key: str) -> float:
        """Block until a request for `key` is allowed.

        Returns:
            float: Total seconds spent waiting.
        """
        config = self.config_for(key)
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                calls = self._calls.setdefault(key, deque())
                while calls and now - calls[0] >= config.window_seconds:
                    calls.popleft()

                delay = 0.0
                if len(calls) >= config.max_requests:
                    delay = config.window_seconds - (now - calls[0])
                elif calls and now - calls[-1] < config.min_delay_seconds:
                    delay = config.min_delay_seconds - (now - calls[-1])

                if delay <= 0:
                    calls.append(now)
                    return waited

            logger.debug(
                "Rate limited, waiting",
                extra={
                    "extra_fields": {"rate_limit_key": key, "delay_s": round(delay, 3)}
                },
            )
            self._sleep(delay)
            waited += delay

    def execute(self, key: str, func: Callable[[], T]) -> T:
        """Run `func` once a slot for `key` is available."""
        self.wait_for_slot(key)
        return func()


def with_retry(
    func: Callable[[], T],
    config: RetryConfig = RETRY_CONFIGS["standard"],
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call `func`, retrying on `retry_on` with exponential backoff.

    Args:
        func: Zero-argument callable to execute.
        config: Attempts and backoff bounds.
        retry_on: Exception types that trigger a retry.
        sleep: Sleep function (injectable for tests).

    Returns:
        The result of the first successful call.

    Raises:
        The last exception once all attempts are exhausted.
    """
    for attempt in range(config.max_attempts):
        try:
            return func()
        except retry_on as e:
            if attempt == config.max_attempts - 1:
                raise
            delay = min(config.initial_delay * (2**attempt), config.max_delay)
            if config.jitter:
                delay *= 1 + random.uniform(-config.jitter, config.jitter)
            logger.warning(
                "Retrying after failure",
                extra={
                    "extra_fields": {
                        "attempt": attempt + 1,
                        "max_attempts": config.max_attempts,
                        "delay_s": round(delay, 3),
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
            )
            sleep(delay)
    raise RuntimeError("with_retry called with max_attempts < 1")


class ProviderLimiter:
    """Bounded concurrency per external provider.

    Args:
        limits: Maximum concurrent calls per provider name.
    """

    def __init__(self, limits: Optional[Dict[str, int]] = None) -> None:
        self.limits = limits or {
            "embedding": EMBEDDING_MAX_CONCURRENCY,
            "reasoning": REASONING_MAX_CONCURRENCY,
        }
        self._semaphores = {
            name: threading.BoundedSemaphore(limit)
            for name, limit in self.limits.items()
        }

    @contextmanager
    def slot(self, provider: str):
        """Hold one concurrency slot for `provider` for the duration of the block."""
        semaphore = self._semaphores[provider]
        semaphore.acquire()
        try:
            yield
        finally:
            semaphore.release()
