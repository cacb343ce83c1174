from __future__ import annotations

import os
from dataclasses import dataclass


def _bool_env(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() not in {"0", "false", "no", ""}


def _float_env(name: str, *, default: float, lo: float, hi: float) -> float:
    try:
        val = float(os.environ.get(name) or default)
    except Exception:
        val = default
    return max(lo, min(val, hi))


@dataclass(frozen=True, slots=True)
class StoreConfig:
    # A "connected" flag older than this is stale (bridge likely crashed).
    liveness_window_s: float = 10.0
    # A snapshot written within this window counts as live even without the flag.
    freshness_window_s: float = 15.0

    @classmethod
    def from_env(cls) -> StoreConfig:
        return cls(
            liveness_window_s=_float_env("TABWATCH_LIVENESS_WINDOW", default=10.0, lo=1.0, hi=300.0),
            freshness_window_s=_float_env("TABWATCH_FRESHNESS_WINDOW", default=15.0, lo=1.0, hi=600.0),
        )


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    command_poll_interval_s: float = 0.3

    @classmethod
    def from_env(cls) -> BridgeConfig:
        return cls(
            command_poll_interval_s=_float_env("TABWATCH_COMMAND_POLL_INTERVAL", default=0.3, lo=0.05, hi=10.0),
        )


@dataclass(frozen=True, slots=True)
class MonitorConfig:
    tabs_interval_s: float = 0.5
    windows_interval_s: float = 2.0
    closed_retention_s: float = 15 * 60
    closed_max_entries: int = 30
    quit_retention_s: float = 15 * 60

    @classmethod
    def from_env(cls) -> MonitorConfig:
        return cls(
            tabs_interval_s=_float_env("TABWATCH_TABS_INTERVAL", default=0.5, lo=0.1, hi=30.0),
            windows_interval_s=_float_env("TABWATCH_WINDOWS_INTERVAL", default=2.0, lo=0.25, hi=60.0),
            closed_retention_s=_float_env("TABWATCH_CLOSED_RETENTION", default=900.0, lo=10.0, hi=86400.0),
            closed_max_entries=int(_float_env("TABWATCH_CLOSED_MAX", default=30, lo=1, hi=500)),
            quit_retention_s=_float_env("TABWATCH_QUIT_RETENTION", default=900.0, lo=10.0, hi=86400.0),
        )


def debug_enabled() -> bool:
    return _bool_env("TABWATCH_DEBUG", default=False)


def log_level_name() -> str:
    if debug_enabled():
        return "DEBUG"
    raw = str(os.environ.get("TABWATCH_LOG_LEVEL") or "INFO").strip().upper()
    return raw if raw in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO"
