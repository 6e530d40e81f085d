"""Server entry point: wires configuration, storage, services and the HTTP API."""

from __future__ import annotations

import argparse
import contextlib
import logging
import signal
import threading
from dataclasses import dataclass
from typing import Iterator, List, Mapping, Optional, Sequence

from flask import Flask
from werkzeug.serving import make_server

from .api import Dependencies, create_app
from .archive import Parser
from .config import Config, ConfigError, load
from .logger import new_logger
from .parse_service import ParseService, ShutdownTimeoutError
from .query_service import QueryService
from .reaper import Reaper
from .repository import Repository, connect
from .schema import create_schema

SHUTDOWN_TIMEOUT = 10.0

_POLL_INTERVAL = 0.5
_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class _Components:
    repo: Repository
    parse_service: ParseService
    query_service: QueryService
    reaper: Reaper
    app: Flask


def _assemble(cfg: Config, repo: Repository, log: logging.Logger) -> _Components:
    parse_service = ParseService(Parser(), repo, log)
    query_service = QueryService(repo)
    reaper = Reaper(repo, cfg.reaper.tick, cfg.reaper.timeout, log)
    app = create_app(
        Dependencies(
            parse_service=parse_service,
            query_service=query_service,
            pool=repo,
            logger=log,
            data_dir=cfg.data_dir,
        )
    )
    return _Components(repo, parse_service, query_service, reaper, app)


@contextlib.contextmanager
def _background_reaper(reaper: Reaper) -> Iterator[threading.Thread]:
    stop = threading.Event()
    worker = threading.Thread(target=reaper.run, args=(stop,), name="reaper", daemon=True)
    worker.start()
    try:
        yield worker
    finally:
        stop.set()
        worker.join()


@contextlib.contextmanager
def _stop_on_signals(stop: threading.Event) -> Iterator[List[str]]:
    """Set stop when SIGINT or SIGTERM arrives; yields the names received."""
    received: List[str] = []

    def handler(signum: int, _frame: object) -> None:
        received.append(signal.Signals(signum).name)
        stop.set()

    previous = {}
    try:
        for sig in _STOP_SIGNALS:
            previous[sig] = signal.signal(sig, handler)
    except ValueError:
        # Not the main thread: signals cannot be caught here.
        pass
    try:
        yield received
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def _serve(components: _Components, port: str, log: logging.Logger) -> None:
    try:
        server = make_server("", int(port), components.app, threaded=True)
    except (OSError, ValueError) as err:
        raise RuntimeError(f"server: {err}") from err

    stop = threading.Event()
    failures: List[BaseException] = []
    addr = f":{port}"

    def serve() -> None:
        log.info("listening", extra={"addr": addr})
        try:
            server.serve_forever()
        except Exception as err:
            failures.append(err)
            stop.set()

    worker = threading.Thread(target=serve, name="http", daemon=True)

    with _stop_on_signals(stop) as received:
        worker.start()
        while not stop.wait(_POLL_INTERVAL):
            pass

    if failures:
        server.server_close()
        raise RuntimeError(f"server: {failures[0]}") from failures[0]

    log.info("shutdown signal", extra={"signal": received[0] if received else ""})

    server.shutdown()
    worker.join()
    server.server_close()

    try:
        components.parse_service.shutdown(SHUTDOWN_TIMEOUT)
    except ShutdownTimeoutError as err:
        log.warning("parse service shutdown timed out", extra={"err": str(err)})

    log.info("stopped")


def run(environ: Optional[Mapping[str, str]] = None) -> None:
    """Start the service and block until a stop signal; raises on startup failure."""
    try:
        cfg = load(environ)
    except ConfigError as err:
        raise ConfigError(f"config: {err}") from err

    log = new_logger(cfg.log_level)
    log.info("starting", extra={"port": cfg.port, "data_dir": cfg.data_dir})

    try:
        repo = connect(cfg.database_url)
    except Exception as err:
        raise RuntimeError(f"postgres: {err}") from err

    try:
        log.info("db connected")
        try:
            create_schema(repo.engine)
        except Exception as err:
            raise RuntimeError(f"migrations: {err}") from err
        log.info("migrations applied")

        components = _assemble(cfg, repo, log)
        with _background_reaper(components.reaper):
            _serve(components, cfg.port, log)
    finally:
        repo.engine.dispose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command entry point; returns the process exit status."""
    parser = argparse.ArgumentParser(
        prog="fabriclog-server",
        description="Serve the fabric log parsing API. Configured through environment variables.",
    )
    parser.parse_args(argv)

    bootstrap = new_logger("info")
    try:
        run()
    except Exception as err:
        bootstrap.error("startup failed", extra={"err": str(err)})
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())