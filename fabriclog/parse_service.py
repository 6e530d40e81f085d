"""Accepts log archives and parses them in the background."""

from __future__ import annotations

import logging
import secrets
import threading
import time
import uuid
from typing import Optional, Protocol

from .domain import Log

_log = logging.getLogger(__name__)


class ShutdownTimeoutError(TimeoutError):
    """Background parsing did not finish within the shutdown timeout."""


class LogParser(Protocol):
    def preflight(self, path: str) -> None: ...

    def parse(self, path: str) -> Log: ...


class ParseRepository(Protocol):
    def insert_processing_log(self, log_id: uuid.UUID) -> None: ...

    def save_domain_log(self, log_id: uuid.UUID, dlog: Log) -> None: ...

    def mark_log_failed(self, log_id: uuid.UUID, message: str) -> None: ...


def _uuid7() -> uuid.UUID:
    """A time-ordered UUID of version 7."""
    millis = (time.time_ns() // 1_000_000) & ((1 << 48) - 1)
    value = (
        (millis << 80)
        | (0x7 << 76)
        | (secrets.randbits(12) << 64)
        | (0b10 << 62)
        | secrets.randbits(62)
    )
    return uuid.UUID(int=value)


def _millis(seconds: float) -> int:
    return int(seconds * 1000)


class ParseService:
    """Registers uploads and parses them on background threads."""

    def __init__(
        self,
        parser: LogParser,
        repo: ParseRepository,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._parser = parser
        self._repo = repo
        self._log = log or _log
        self._cond = threading.Condition()
        self._pending = 0

    def submit(self, path: str) -> uuid.UUID:
        """Check the archive, record it as processing and start parsing it."""
        self._parser.preflight(path)

        log_id = _uuid7()
        try:
            self._repo.insert_processing_log(log_id)
        except Exception as err:
            self._log.error(
                "insert processing log failed", extra={"log_id": str(log_id), "err": str(err)}
            )
            raise

        with self._cond:
            self._pending += 1
        worker = threading.Thread(
            target=self._run, args=(log_id, path), name=f"parse-{log_id}", daemon=True
        )
        worker.start()
        return log_id

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Wait for background parsing; raise ShutdownTimeoutError on timeout."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._pending == 0, timeout):
                raise ShutdownTimeoutError("parse service shutdown: timed out")

    def _run(self, log_id: uuid.UUID, path: str) -> None:
        try:
            self._process(log_id, path)
        finally:
            with self._cond:
                self._pending -= 1
                self._cond.notify_all()

    def _process(self, log_id: uuid.UUID, path: str) -> None:
        key = str(log_id)

        parse_start = time.monotonic()
        try:
            dlog = self._parser.parse(path)
        except Exception as err:
            self._log.warning(
                "parse failed",
                extra={
                    "log_id": key,
                    "path": path,
                    "parse_duration_ms": _millis(time.monotonic() - parse_start),
                    "err": str(err),
                },
            )
            self._mark_failed(log_id, str(err), "mark log failed")
            return
        parse_ms = _millis(time.monotonic() - parse_start)

        save_start = time.monotonic()
        try:
            self._repo.save_domain_log(log_id, dlog)
        except Exception as err:
            self._log.error(
                "save log failed",
                extra={
                    "log_id": key,
                    "save_duration_ms": _millis(time.monotonic() - save_start),
                    "err": str(err),
                },
            )
            self._mark_failed(
                log_id, f"save failed: {err}", "mark log failed after save error"
            )
            return
        save_ms = _millis(time.monotonic() - save_start)

        self._log.info(
            "log parsed",
            extra={
                "log_id": key,
                "path": path,
                "parse_duration_ms": parse_ms,
                "save_duration_ms": save_ms,
                "nodes_count": len(dlog.nodes),
                "ports_count": sum(len(node.ports) for node in dlog.nodes),
            },
        )

    def _mark_failed(self, log_id: uuid.UUID, message: str, failure_msg: str) -> None:
        try:
            self._repo.mark_log_failed(log_id, message)
        except Exception as err:
            self._log.error(failure_msg, extra={"log_id": str(log_id), "err": str(err)})