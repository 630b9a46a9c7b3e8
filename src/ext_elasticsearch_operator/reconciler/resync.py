"""Periodic resync and cache recycle scheduling."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from .loop import ReconcileLoop

logger = logging.getLogger(__name__)

# Retry delay while the first cache build has not succeeded
INITIAL_BUILD_RETRY_SECONDS = 10.0


class ResyncScheduler:
    """Asks the loop to resync every known resource and to rebuild its cache.

    The scheduler only enqueues commands; it never preempts a running pass.
    """

    def __init__(
        self,
        loop: ReconcileLoop,
        resync_interval: float,
        recycle_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the scheduler.

        Args:
            loop: Reconcile loop receiving the commands
            resync_interval: Seconds between resyncs of all known resources
            recycle_interval: Seconds between full cache rebuilds
            clock: Monotonic clock (overridable in tests)
        """
        self.loop = loop
        self.resync_interval = resync_interval
        self.recycle_interval = recycle_interval
        self.clock = clock
        now = clock()
        self._next_resync = now + resync_interval
        self._next_recycle = now + recycle_interval
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> list[str]:
        """Issue whatever is due.

        Returns:
            Names of the commands issued ("resync", "recycle")
        """
        now = self.clock()
        issued = []
        if now >= self._next_recycle:
            self.loop.request_recycle()
            self._next_recycle = now + self.recycle_interval
            # A rebuild enqueues every resource, which covers a resync
            self._next_resync = now + self.resync_interval
            issued.append("recycle")
        elif now >= self._next_resync:
            self.loop.request_resync()
            self._next_resync = now + self.resync_interval
            issued.append("resync")

        if not self.loop.cache_built and "recycle" not in issued:
            self._next_recycle = min(self._next_recycle, now + INITIAL_BUILD_RETRY_SECONDS)
        return issued

    def seconds_until_next(self) -> float:
        return max(0.0, min(self._next_resync, self._next_recycle) - self.clock())

    def run(self) -> None:
        logger.info(
            f"Resync every {self.resync_interval:.0f}s, cache recycle every {self.recycle_interval:.0f}s"
        )
        while not self._stopping.wait(self.seconds_until_next()):
            self.tick()

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="resync-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout)
