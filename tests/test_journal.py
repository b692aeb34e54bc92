"""CSV journal tests."""
from __future__ import annotations

import csv
import json
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from motorrelay.journal import FIELDS, RelayJournal


class RelayJournalTest(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.path = Path(tmp.name, "nested", "journal.csv")
        self.journal = RelayJournal(self.path, clock=lambda: datetime(2024, 1, 1, 12, tzinfo=timezone.utc))

    def _rows(self):
        with self.path.open("r", encoding="utf-8", newline="") as handle:
            return list(csv.DictReader(handle))

    def test_header_and_row(self) -> None:
        self.journal.log("identify", status="ok", connection="10.0.0.2:5000", extra={"b": 2, "a": 1})
        with self.path.open("r", encoding="utf-8") as handle:
            self.assertEqual(handle.readline().strip(), ",".join(FIELDS))
        row = self._rows()[0]
        self.assertEqual(row["timestamp"], "2024-01-01T12:00:00.000+00:00")
        self.assertEqual(row["connection"], "10.0.0.2:5000")
        self.assertEqual(row["extra"], '{"a":1,"b":2}')

    def test_reopening_keeps_single_header(self) -> None:
        self.journal.log("connect")
        RelayJournal(self.path).log("disconnect")
        self.assertEqual([row["event"] for row in self._rows()], ["connect", "disconnect"])

    def test_timer_records_success_and_failure(self) -> None:
        with self.journal.timer("log_query", connection="dash") as info:
            info["count"] = 3
        with self.assertRaises(KeyError):
            with self.journal.timer("log_delete"):
                raise KeyError("gone")

        ok, failed = self._rows()
        self.assertEqual(ok["status"], "ok")
        self.assertEqual(json.loads(ok["extra"])["count"], 3)
        self.assertEqual(failed["status"], "error")
        self.assertEqual(json.loads(failed["extra"])["exception"], "KeyError")


if __name__ == "__main__":
    unittest.main()
