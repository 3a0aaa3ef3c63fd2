from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, replace
from typing import Mapping

from .backend import DEFAULT_LOAD_LIMIT
from .store import AUTO_DISMISS_DELAY_S

ENV_PREFIX = "PEERCHAT_"


@dataclass(frozen=True)
class ClientConfig:
    url: str = "ws://127.0.0.1:8080/v1/engine"
    passphrase: str | None = None
    call_timeout: float | None = None
    load_limit: int = DEFAULT_LOAD_LIMIT
    heartbeat_s: float | None = 30.0
    notification_ttl_s: float = AUTO_DISMISS_DELAY_S
    log_level: str = "WARNING"


def _optional_float(raw: str) -> float | None:
    raw = raw.strip().lower()
    if raw in {"", "none", "0"}:
        return None
    value = float(raw)
    if value < 0:
        raise ValueError("timeout must be non-negative")
    return value


def from_env(environ: Mapping[str, str] | None = None, base: ClientConfig | None = None) -> ClientConfig:
    """Overlay ``PEERCHAT_*`` environment variables on ``base``."""

    environ = os.environ if environ is None else environ
    config = base or ClientConfig()
    updates: dict[str, object] = {}
    if f"{ENV_PREFIX}URL" in environ:
        updates["url"] = environ[f"{ENV_PREFIX}URL"]
    if f"{ENV_PREFIX}PASSPHRASE" in environ:
        updates["passphrase"] = environ[f"{ENV_PREFIX}PASSPHRASE"]
    if f"{ENV_PREFIX}CALL_TIMEOUT" in environ:
        updates["call_timeout"] = _optional_float(environ[f"{ENV_PREFIX}CALL_TIMEOUT"])
    if f"{ENV_PREFIX}LOAD_LIMIT" in environ:
        updates["load_limit"] = int(environ[f"{ENV_PREFIX}LOAD_LIMIT"])
    if f"{ENV_PREFIX}LOG_LEVEL" in environ:
        updates["log_level"] = environ[f"{ENV_PREFIX}LOG_LEVEL"].upper()
    return replace(config, **updates)


def add_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--url", default=None, help="Engine WebSocket URL")
    parser.add_argument("--passphrase", default=None, help="Passphrase used to unlock the engine")
    parser.add_argument(
        "--call-timeout",
        type=_optional_float,
        default=None,
        help="Seconds to wait for short engine calls; blocking waits never time out",
    )
    parser.add_argument("--load-limit", type=int, default=None, help="Messages fetched per page")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, ...)")


def from_args(args: argparse.Namespace, base: ClientConfig | None = None) -> ClientConfig:
    config = base or ClientConfig()
    updates: dict[str, object] = {}
    for name in ("url", "passphrase", "call_timeout", "load_limit"):
        value = getattr(args, name, None)
        if value is not None:
            updates[name] = value
    if getattr(args, "log_level", None):
        updates["log_level"] = args.log_level.upper()
    return replace(config, **updates)


def load(args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> ClientConfig:
    """Defaults, then environment, then command line flags."""

    return from_args(args, from_env(environ))
