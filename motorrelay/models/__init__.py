"""Data model for duty-cycle log records and range queries."""
from .log_entry import DateRangeQuery, DutyCycleLogEntry, format_server_time, utc_now
from .db_models import Base, MotorLog

__all__ = [
    "DutyCycleLogEntry",
    "DateRangeQuery",
    "MotorLog",
    "Base",
    "format_server_time",
    "utc_now",
]
