"""Rate limiting utilities for API calls."""

from __future__ import annotations

import os
import threading
import time
from typing import Callable, TypeVar

from .. import metrics

_T = TypeVar("_T")

# Rate limit configuration
_K8S_RATE_LIMIT_PER_SECOND = float(os.getenv("K8S_RATE_LIMIT_PER_SECOND", "50.0"))
_ELASTIC_RATE_LIMIT_PER_SECOND = float(os.getenv("ELASTIC_RATE_LIMIT_PER_SECOND", "50.0"))

RATE_LIMIT_MAX_RETRIES = 3


class RateLimiter:
    """Minimum-interval limiter shared by all callers of one API."""

    def __init__(self, per_second: float) -> None:
        self.min_interval = 1.0 / per_second if per_second > 0 else 0.0
        self._last_call = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        """Block until the next call is allowed."""
        with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_call
            if elapsed < self.min_interval:
                time.sleep(self.min_interval - elapsed)
            self._last_call = time.monotonic()


k8s_limiter = RateLimiter(_K8S_RATE_LIMIT_PER_SECOND)
elasticsearch_limiter = RateLimiter(_ELASTIC_RATE_LIMIT_PER_SECOND)


def is_rate_limit_error(e: Exception) -> bool:
    """Check whether an API exception reports throttling.

    Both the kubernetes client (``status``) and the elasticsearch client
    (``meta.status``) errors are understood.
    """
    status = getattr(e, "status", None)
    if not isinstance(status, int):
        meta = getattr(e, "meta", None)
        status = getattr(meta, "status", None)
    if status == 429:
        return True
    return status == 503 and "rate limit" in str(e).lower()


def call_with_rate_limit_retry(
    func: Callable[[], _T],
    api_type: str,
    max_retries: int = RATE_LIMIT_MAX_RETRIES,
    sleep: Callable[[float], None] = time.sleep,
) -> _T:
    """Call ``func``, retrying throttled requests with exponential backoff.

    Only the throttled request itself is repeated: a 429 means it was not applied.

    Args:
        func: Zero-argument callable issuing one API request
        api_type: Label for the rate limit metric ("k8s" or "elasticsearch")
        max_retries: Retries after the first attempt
        sleep: Sleep function (overridable in tests)

    Returns:
        Whatever ``func`` returns
    """
    attempt = 0
    while True:
        try:
            return func()
        except Exception as e:
            if not is_rate_limit_error(e) or attempt >= max_retries:
                raise
            metrics.rate_limit_hits_total.labels(api_type=api_type).inc()
            # Exponential backoff: 1s, 2s, 4s
            sleep(2 ** attempt)
            attempt += 1
