"""Background reclamation of expired objects.

A single daemon thread wakes on a fixed interval and asks the store to purge
expired objects. Stopping is cooperative: the stop event is observed at the
wait boundary, and a sweep already in progress runs to completion.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import timedelta

logger = logging.getLogger(__name__)


class ReclamationLoop:
    """Periodic sweeper bound to a purge callable.

    Args:
        purge: Callable performing one sweep and returning the number of
            objects deleted.
        interval: Time between sweeps.
        name: Thread name, for diagnostics.
    """

    def __init__(
        self,
        purge: Callable[[], int],
        interval: timedelta,
        *,
        name: str = "ephemstore-reclaimer",
    ) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("Reclamation interval must be positive")

        self._purge = purge
        self._interval = interval.total_seconds()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def running(self) -> bool:
        """Return True while the worker thread is alive."""
        return self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread."""
        if self._thread.is_alive():
            logger.warning("Reclamation loop already running")
            return
        self._thread.start()
        logger.info("Reclamation loop started (interval=%ss)", self._interval)

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to exit at its next wait boundary.

        Args:
            timeout: If given, wait up to this many seconds for the thread
                to exit.
        """
        if self._stop_event.is_set():
            logger.debug("Reclamation loop already stopped")
            return

        self._stop_event.set()
        if timeout is not None and self._thread.is_alive():
            self._thread.join(timeout)
        logger.info("Reclamation loop stopped")

    def _run(self) -> None:
        """Main loop: wait, then sweep, until stopped."""
        while not self._stop_event.wait(self._interval):
            try:
                purged = self._purge()
            except Exception as e:
                logger.error("Reclamation sweep failed: %s", e, exc_info=True)
                continue

            if purged:
                logger.info("Reclamation sweep removed %d expired objects", purged)
