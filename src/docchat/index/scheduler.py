"""Background reindexing task."""

from __future__ import annotations

import logging
import threading
import time

from docchat.index.indexer import IndexingInProgressError, Scanner

LOGGER = logging.getLogger(__name__)


class AutoIndexer(threading.Thread):
    """Thread that reindexes when the last pass is older than ``stale_after_hours``.

    It checks once after ``startup_delay`` seconds and then every ``interval``
    seconds until ``cancel()`` is called.
    """

    def __init__(
        self,
        scanner: Scanner,
        *,
        interval: float = 3600.0,
        stale_after_hours: float = 24.0,
        startup_delay: float = 5.0,
    ) -> None:
        super().__init__(daemon=True, name="docchat-auto-indexer")
        self.scanner = scanner
        self.interval = interval
        self.stale_after = stale_after_hours * 3600
        self.startup_delay = startup_delay
        self._stopped = threading.Event()

    def run(self) -> None:
        if self._stopped.wait(self.startup_delay):
            return
        self.check()
        while not self._stopped.wait(self.interval):
            self.check()

    def cancel(self) -> None:
        """Stop the schedule; a scan already running is allowed to finish."""
        self._stopped.set()

    @property
    def cancelled(self) -> bool:
        return self._stopped.is_set()

    def is_due(self, now: float | None = None) -> bool:
        if not self.scanner.directories or self.scanner.is_indexing:
            return False
        now = time.time() if now is None else now
        return self.scanner.last_indexed < now - self.stale_after

    def check(self) -> bool:
        """Run a scan if one is due; return whether a scan ran."""
        if not self.is_due():
            return False
        LOGGER.info("Auto-indexing directories: %s", [str(d) for d in self.scanner.directories])
        try:
            self.scanner.scan()
        except IndexingInProgressError:
            LOGGER.debug("Auto-indexing skipped, a scan is already running")
            return False
        except Exception:
            LOGGER.exception("Auto-indexing failed")
            return False
        return True
