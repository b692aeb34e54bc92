"""Simple smoke test to ensure the data model imports and converts correctly."""
from datetime import datetime

from motorrelay.models import DutyCycleLogEntry, MotorLog


def test_imports():
    entry = DutyCycleLogEntry.from_payload(
        {"mac": "24:0A:C4:00:00:01", "onTime": "10:00", "offTime": "10:05", "duration": 300}
    )
    assert entry.duration == "300"
    row = MotorLog.from_entry(entry)
    row.server_time = datetime(2024, 1, 1, 6, 30)
    wire = row.to_entry().to_dict()
    assert wire["macAddress"] == "24:0A:C4:00:00:01"
    assert wire["serverTime"] == "2024-01-01T06:30:00.000Z"


if __name__ == "__main__":
    test_imports()
    print("models import smoke test: OK")
