from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from motorrelay.errors import InvalidDateRange


def utc_now() -> datetime:
    """Naive UTC timestamp, the form stored in the log table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def format_server_time(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return to_naive_utc(dt).isoformat(timespec="milliseconds") + "Z"


@dataclass(slots=True)
class DutyCycleLogEntry:
    """One completed motor ON->OFF interval as reported by the device.

    ``on_time``, ``off_time`` and ``duration`` are the device's own
    human-formatted strings; only ``server_time`` is meant for sorting.
    """

    mac: str
    on_time: str
    off_time: str
    duration: str
    server_time: Optional[datetime] = None
    id: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "DutyCycleLogEntry":
        missing = [key for key in ("mac", "onTime", "offTime", "duration") if payload.get(key) is None]
        if missing:
            raise ValueError(f"uploadLog payload missing {', '.join(missing)}")
        return cls(
            mac=str(payload["mac"]),
            on_time=str(payload["onTime"]),
            off_time=str(payload["offTime"]),
            duration=str(payload["duration"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "macAddress": self.mac,
            "onTime": self.on_time,
            "offTime": self.off_time,
            "duration": self.duration,
            "serverTime": format_server_time(self.server_time),
        }


def _parse_day(raw: Any, field_name: str) -> Optional[date]:
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        raise InvalidDateRange(f"{field_name} must be an ISO date string")
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError as exc:
        raise InvalidDateRange(f"{field_name} {raw!r} is not an ISO date") from exc


@dataclass(frozen=True, slots=True)
class DateRangeQuery:
    """Calendar-day range over the server timestamp, both days inclusive."""

    start: Optional[date] = None
    end: Optional[date] = None

    @classmethod
    def from_payload(cls, payload: Optional[Mapping[str, Any]]) -> "DateRangeQuery":
        payload = payload or {}
        return cls(
            start=_parse_day(payload.get("startDate"), "startDate"),
            end=_parse_day(payload.get("endDate"), "endDate"),
        )

    @property
    def is_unrestricted(self) -> bool:
        return self.start is None and self.end is None

    @property
    def is_complete(self) -> bool:
        return self.start is not None and self.end is not None

    def bounds(self) -> Tuple[Optional[datetime], Optional[datetime]]:
        """Return ``(inclusive lower, exclusive upper)`` naive UTC bounds."""
        lower = datetime.combine(self.start, time.min) if self.start else None
        upper = None
        # date.max has no following day; it leaves the range open-ended.
        if self.end is not None and self.end < date.max:
            upper = datetime.combine(self.end + timedelta(days=1), time.min)
        return lower, upper
