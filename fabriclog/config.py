"""Service configuration from environment variables and a YAML file."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import timedelta
from fractions import Fraction
from typing import Mapping, Optional

import yaml

ENV_PORT = "PORT"
ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_DATA_DIR = "DATA_DIR"
ENV_DATABASE_URL = "DATABASE_URL"
ENV_CONFIG_PATH = "CONFIG_PATH"

DEFAULT_PORT = "8080"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_DATA_DIR = "./data"
DEFAULT_CONFIG_PATH = "./configs/config.yaml"

_UNIT_NS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_PART = re.compile(r"(?P<int>\d*)(?:\.(?P<frac>\d*))?(?P<unit>ns|us|µs|μs|ms|h|m|s)")
_MAX_NS = 2**63 - 1


class ConfigError(Exception):
    """Raised when the configuration is missing or invalid."""


@dataclass(frozen=True)
class ReaperConfig:
    timeout: timedelta
    tick: timedelta


@dataclass(frozen=True)
class Config:
    port: str
    log_level: str
    data_dir: str
    database_url: str
    reaper: ReaperConfig


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"1h30m"`` or ``"250ms"``."""
    body = text
    negative = False
    if body[:1] in ("-", "+"):
        negative = body[0] == "-"
        body = body[1:]
    if body == "0":
        return timedelta(0)
    if not body:
        raise ValueError(f"invalid duration {text!r}")

    total = Fraction(0)
    pos = 0
    while pos < len(body):
        match = _PART.match(body, pos)
        if match is None or not (match["int"] or match["frac"]):
            raise ValueError(f"invalid duration {text!r}")
        value = Fraction(int(match["int"] or "0"))
        frac = match["frac"]
        if frac:
            value += Fraction(int(frac), 10 ** len(frac))
        total += value * _UNIT_NS[match["unit"]]
        pos = match.end()

    limit = _MAX_NS + 1 if negative else _MAX_NS
    if total > limit:
        raise ValueError(f"invalid duration {text!r}")

    micros = round(total / 1000)
    return timedelta(microseconds=-micros if negative else micros)


def _env_or(environ: Mapping[str, str], key: str, default: str) -> str:
    value = environ.get(key, "").strip()
    return value or default


def _scalar(value: object) -> str:
    return "" if value is None else str(value)


def load(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Build the configuration; raises ConfigError on any problem."""
    env = os.environ if environ is None else environ

    database_url = env.get(ENV_DATABASE_URL, "")
    if database_url == "":
        raise ConfigError("DATABASE_URL is required")

    config_path = _env_or(env, ENV_CONFIG_PATH, DEFAULT_CONFIG_PATH)
    try:
        with open(config_path, encoding="utf-8") as fh:
            data = fh.read()
    except OSError as err:
        raise ConfigError(f"read config {config_path}: {err}") from err

    try:
        document = yaml.safe_load(data)
    except yaml.YAMLError as err:
        raise ConfigError(f"parse config: {err}") from err

    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ConfigError("parse config: top level must be a mapping")
    reaper_section = document.get("reaper") or {}
    if not isinstance(reaper_section, dict):
        raise ConfigError("parse config: reaper must be a mapping")

    try:
        timeout = parse_duration(_scalar(reaper_section.get("timeout")))
    except ValueError as err:
        raise ConfigError(f"parse reaper.timeout: {err}") from err
    try:
        tick = parse_duration(_scalar(reaper_section.get("tick")))
    except ValueError as err:
        raise ConfigError(f"parse reaper.tick: {err}") from err

    if timeout <= timedelta(0) or tick <= timedelta(0):
        raise ConfigError("reaper.timeout and reaper.tick must be positive")

    return Config(
        port=_env_or(env, ENV_PORT, DEFAULT_PORT),
        log_level=_env_or(env, ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL),
        data_dir=_env_or(env, ENV_DATA_DIR, DEFAULT_DATA_DIR),
        database_url=database_url,
        reaper=ReaperConfig(timeout=timeout, tick=tick),
    )