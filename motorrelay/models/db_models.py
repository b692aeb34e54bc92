"""SQLAlchemy models for the duty-cycle log table."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, Integer, String
from sqlalchemy.orm import declarative_base

from motorrelay.models.log_entry import DutyCycleLogEntry, utc_now

Base = declarative_base()


class MotorLog(Base):
    """Persistent row for one motor ON->OFF interval."""
    __tablename__ = "motor_logs"

    id = Column(Integer, primary_key=True)
    mac_address = Column(String(64), nullable=False)
    on_time = Column(String(64), nullable=False)
    off_time = Column(String(64), nullable=False)
    duration = Column(String(64), nullable=False)
    server_time = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (Index("ix_motor_logs_server_time", "server_time"),)

    @classmethod
    def from_entry(cls, entry: DutyCycleLogEntry) -> "MotorLog":
        return cls(
            mac_address=entry.mac,
            on_time=entry.on_time,
            off_time=entry.off_time,
            duration=entry.duration,
            server_time=entry.server_time,
        )

    def to_entry(self) -> DutyCycleLogEntry:
        return DutyCycleLogEntry(
            id=self.id,
            mac=self.mac_address,
            on_time=self.on_time,
            off_time=self.off_time,
            duration=self.duration,
            server_time=self.server_time,
        )

    def __repr__(self) -> str:
        return f"<MotorLog {self.mac_address} {self.duration} at {self.server_time}>"


__all__ = ["Base", "MotorLog"]
