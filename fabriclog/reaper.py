"""Periodic failing of logs stuck in processing."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Optional, Protocol

_log = logging.getLogger(__name__)


class StaleReaper(Protocol):
    def reap_stale_processing(self, timeout: timedelta) -> int: ...


class Reaper:
    """Every tick, marks logs that stayed in processing too long as failed."""

    def __init__(
        self,
        repo: StaleReaper,
        tick: timedelta,
        timeout: timedelta,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._repo = repo
        self._tick = tick
        self._timeout = timeout
        self._log = log or _log

    def run(self, stop_event: threading.Event) -> None:
        """Run cycles every tick until stop_event is set."""
        self._log.info(
            "reaper started", extra={"tick": str(self._tick), "timeout": str(self._timeout)}
        )
        interval = self._tick.total_seconds()
        while not stop_event.wait(interval):
            self._cycle()
        self._log.info("reaper stopped")

    def _cycle(self) -> None:
        try:
            count = self._repo.reap_stale_processing(self._timeout)
        except Exception as err:
            self._log.error("reap cycle failed", extra={"err": str(err)})
            return
        if count > 0:
            self._log.info("reaped stale processing logs", extra={"count": count})