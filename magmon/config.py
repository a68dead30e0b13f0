"""Runtime configuration for the monitor and its HTTP server."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

ENV_PREFIX = "MAGMON_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def parse_interval(raw: str) -> Optional[float]:
    """Seconds as a float; empty, ``0``, ``off`` or ``none`` disable the interval."""
    value = raw.strip().lower()
    if value in ("", "0", "off", "none"):
        return None
    return float(value)


@dataclass(slots=True)
class MonitorConfig:
    """Settings shared by :class:`~magmon.monitor.MagMonitor` and the CLI."""

    restart_interval: float = 1.0
    allow_duplicates: bool = True
    adapter: Optional[str] = None
    connect_timeout: float = 10.0
    summary_interval: Optional[float] = 200.0
    metrics_path: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 3000

    def __post_init__(self) -> None:
        if self.restart_interval <= 0:
            raise ValueError("restart_interval must be positive")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.summary_interval is not None and self.summary_interval <= 0:
            raise ValueError("summary_interval must be positive when provided")
        if not 0 < self.port < 65536:
            raise ValueError("port must be between 1 and 65535")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "MonitorConfig":
        env = os.environ if environ is None else environ

        def get(name: str) -> str:
            return env.get(ENV_PREFIX + name, "")

        kwargs: Dict[str, Any] = {}
        if get("RESTART_INTERVAL"):
            kwargs["restart_interval"] = float(get("RESTART_INTERVAL"))
        if get("ALLOW_DUPLICATES"):
            kwargs["allow_duplicates"] = _parse_bool(ENV_PREFIX + "ALLOW_DUPLICATES", get("ALLOW_DUPLICATES"))
        if get("ADAPTER"):
            kwargs["adapter"] = get("ADAPTER")
        if get("CONNECT_TIMEOUT"):
            kwargs["connect_timeout"] = float(get("CONNECT_TIMEOUT"))
        if get("SUMMARY_INTERVAL"):
            kwargs["summary_interval"] = parse_interval(get("SUMMARY_INTERVAL"))
        if get("METRICS"):
            kwargs["metrics_path"] = get("METRICS")
        if get("HOST"):
            kwargs["host"] = get("HOST")
        # bare ``port`` is accepted as a fallback
        port = get("PORT") or env.get("port", "")
        if port:
            kwargs["port"] = int(port)
        return cls(**kwargs)


__all__ = ["ENV_PREFIX", "MonitorConfig", "parse_interval"]
