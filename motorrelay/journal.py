"""CSV journal of relay traffic events (identify, forwards, store timings)."""
from __future__ import annotations

import asyncio
import contextlib
import csv
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Sequence


FIELDS: Sequence[str] = (
    "timestamp",
    "event",
    "status",
    "connection",
    "message",
    "extra",
)


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _normalize_extra(extra: Optional[Mapping[str, Any]]) -> str:
    if not extra:
        return ""
    try:
        return json.dumps(extra, separators=(",", ":"), ensure_ascii=True, sort_keys=True)
    except (TypeError, ValueError):
        return repr(extra)


@dataclass(slots=True)
class JournalRecord:
    timestamp: str
    event: str
    status: str = ""
    connection: str = ""
    message: str = ""
    extra: str = ""

    def as_row(self) -> Dict[str, str]:
        return {
            "timestamp": self.timestamp,
            "event": self.event,
            "status": self.status,
            "connection": self.connection,
            "message": self.message,
            "extra": self.extra,
        }


class RelayJournal:
    """Append-only CSV log of relay events.

    Rows are written and flushed one at a time so the file can be tailed
    while the relay runs.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._ensure_header()

    def _ensure_header(self) -> None:
        if self.path.exists() and self.path.stat().st_size > 0:
            return
        with self._lock:
            with self.path.open("w", newline="", encoding="utf-8") as handle:
                csv.DictWriter(handle, fieldnames=FIELDS).writeheader()

    def log(
        self,
        event: str,
        *,
        status: Optional[str] = None,
        connection: Optional[str] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        record = JournalRecord(
            timestamp=self._timestamp(),
            event=event,
            status=status or "",
            connection=connection or "",
            message=message or "",
            extra=_normalize_extra(extra),
        )
        with self._lock:
            with self.path.open("a", newline="", encoding="utf-8") as handle:
                csv.DictWriter(handle, fieldnames=FIELDS).writerow(record.as_row())
                handle.flush()

    async def log_async(self, event: str, **kwargs: Any) -> None:
        await asyncio.to_thread(self.log, event, **kwargs)

    @contextlib.contextmanager
    def timer(
        self,
        event: str,
        *,
        connection: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Record ``event`` with its duration; the yielded dict is merged into ``extra``."""
        start = perf_counter()
        payload: Dict[str, Any] = dict(extra or {})
        try:
            yield payload
        except Exception as exc:
            payload["exception"] = type(exc).__name__
            payload["duration"] = round(perf_counter() - start, 6)
            self.log(event, status="error", connection=connection, message=str(exc), extra=payload)
            raise
        else:
            payload["duration"] = round(perf_counter() - start, 6)
            self.log(event, status="ok", connection=connection, extra=payload)

    def _timestamp(self) -> str:
        dt = self._clock()
        if not isinstance(dt, datetime):
            return str(dt)
        return _ensure_utc(dt).isoformat(timespec="milliseconds")


__all__ = ["RelayJournal", "JournalRecord", "FIELDS"]
