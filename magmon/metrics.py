"""CSV log of sensor connection lifecycle events."""
from __future__ import annotations

import csv
import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence


FIELDS: Sequence[str] = (
    "timestamp",
    "address",
    "event",
    "outcome",
    "elapsed",
    "reason",
    "extra",
)

OK = "ok"
ERROR = "error"


def _encode_extra(extra: Mapping[str, Any]) -> str:
    if not extra:
        return ""
    try:
        return json.dumps(extra, separators=(",", ":"), ensure_ascii=True, sort_keys=True)
    except (TypeError, ValueError):
        return repr(extra)


@dataclass(slots=True)
class LifecycleEvent:
    """One connect/discover/subscribe/disconnect outcome for a sensor."""

    event: str
    address: str
    outcome: str = OK
    elapsed: Optional[float] = None
    reason: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_row(self, timestamp: str, static_extra: Mapping[str, Any]) -> Dict[str, str]:
        merged = dict(static_extra)
        merged.update(self.extra)
        return {
            "timestamp": timestamp,
            "address": self.address,
            "event": self.event,
            "outcome": self.outcome,
            "elapsed": "" if self.elapsed is None else f"{self.elapsed:.3f}",
            "reason": self.reason or "",
            "extra": _encode_extra(merged),
        }


class MetricsLogger:
    """Append-only CSV file of :class:`LifecycleEvent` rows.

    Each row is flushed as it is written so the file can be tailed while the
    monitor runs. Sensor readings never go here, only connection outcomes.
    An existing file is appended to; the header is written only for a new or
    empty file.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        static_extra: Mapping[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self._static_extra: Dict[str, Any] = dict(static_extra or {})
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists() or self.path.stat().st_size == 0:
            self._append(None)

    def write(self, event: LifecycleEvent) -> None:
        self._append(event.to_row(self._timestamp(), self._static_extra))

    def log(
        self,
        event: str,
        address: str,
        outcome: str = OK,
        *,
        elapsed: Optional[float] = None,
        reason: Optional[str] = None,
        **extra: Any,
    ) -> None:
        self.write(LifecycleEvent(event, address, outcome, elapsed=elapsed, reason=reason, extra=extra))

    def _append(self, row: Optional[Dict[str, str]]) -> None:
        with self._lock:
            with self.path.open("a", newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=FIELDS)
                if row is None:
                    writer.writeheader()
                else:
                    writer.writerow(row)
                handle.flush()

    def _timestamp(self) -> str:
        moment = self._clock()
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")


__all__ = [
    "ERROR",
    "FIELDS",
    "LifecycleEvent",
    "MetricsLogger",
    "OK",
]
