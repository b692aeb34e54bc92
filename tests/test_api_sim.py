"""Integration-style tests for the FastAPI relay surface."""
from __future__ import annotations

import tempfile
import time
import unittest
from pathlib import Path
from typing import Optional

from fastapi.testclient import TestClient

from motorrelay.api import create_app
from motorrelay.config import RelaySettings

STATUS_PAYLOAD = {
    "motorStatus": "OFF",
    "systemMode": "MANUAL",
    "doorStatus": "OPEN",
    "lastAction": "MOTOR_OFF",
    "wifiSignal": -70,
    "localIP": "10.0.0.7",
    "wsHost": "relay.example",
}


class RelayApiSimulationTest(unittest.TestCase):
    database_url: Optional[str] = "sqlite://"

    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        self.client = self._start(RelaySettings(database_url=self.database_url, static_dir=self.tmp / "missing"))

    def _start(self, settings: RelaySettings) -> TestClient:
        client = TestClient(create_app(settings))
        client.__enter__()
        self.addCleanup(client.__exit__, None, None, None)
        return client

    def _wait_for_device_online(self, expected: bool) -> None:
        for _ in range(100):
            if self.client.get("/health").json()["deviceOnline"] is expected:
                return
            time.sleep(0.02)
        self.fail(f"deviceOnline never became {expected}")

    def test_health_endpoint_reports_relay_state(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "ok")
        self.assertIn("time", payload)
        self.assertFalse(payload["deviceOnline"])
        self.assertEqual(payload["clients"], 0)
        self.assertTrue(payload["storeAvailable"])

    def test_command_and_status_flow_between_device_and_dashboard(self) -> None:
        with self.client.websocket_connect("/") as device, self.client.websocket_connect("/ws") as dashboard:
            device.send_json({"type": "esp32-identify"})
            device.send_json({"type": "ping"})
            self.assertEqual(device.receive_json(), {"type": "pong"})

            command = {"type": "command", "command": "MOTOR_ON", "value": 1}
            dashboard.send_json(command)
            self.assertEqual(device.receive_json(), command)

            device.send_json({"type": "statusUpdate", "payload": STATUS_PAYLOAD})
            self.assertEqual(dashboard.receive_json(), {"type": "statusUpdate", "payload": STATUS_PAYLOAD})

            dashboard.send_json({"type": "requestStatus"})
            self.assertEqual(dashboard.receive_json(), {"type": "serverStatus", "deviceOnline": True})
            self.assertEqual(device.receive_json()["command"], "FORCE_STATUS_UPDATE")

            health = self.client.get("/health").json()
            self.assertTrue(health["deviceOnline"])
            self.assertEqual(health["clients"], 2)

    def test_device_disconnect_turns_commands_into_offline_errors(self) -> None:
        with self.client.websocket_connect("/") as dashboard:
            with self.client.websocket_connect("/") as device:
                device.send_json({"type": "esp32-identify"})
                device.send_json({"type": "ping"})
                device.receive_json()
            self._wait_for_device_online(False)

            dashboard.send_json({"type": "command", "command": "MOTOR_OFF"})
            self.assertEqual(dashboard.receive_json(), {"type": "error", "message": "Device Offline (No Socket)."})

    def test_malformed_json_keeps_connection_usable(self) -> None:
        with self.client.websocket_connect("/") as dashboard:
            dashboard.send_text("{definitely not json")
            dashboard.send_text('{"type":"unknownThing"}')
            dashboard.send_json({"type": "ping"})
            self.assertEqual(dashboard.receive_json(), {"type": "pong"})

    def test_uploaded_log_is_returned_by_query(self) -> None:
        with self.client.websocket_connect("/") as device, self.client.websocket_connect("/") as dashboard:
            device.send_json({"type": "esp32-identify"})
            device.send_json(
                {
                    "type": "uploadLog",
                    "payload": {"mac": "24:0A:C4:AA:BB:CC", "onTime": "07:00:00", "offTime": "07:12:30", "duration": "00:12:30"},
                }
            )
            device.send_json({"type": "ping"})
            self.assertEqual(device.receive_json(), {"type": "pong"})

            dashboard.send_json({"type": "getLogs", "payload": {}})
            reply = dashboard.receive_json()
            self.assertEqual(reply["type"], "logHistory")
            self.assertEqual(len(reply["payload"]), 1)
            self.assertEqual(reply["payload"][0]["macAddress"], "24:0A:C4:AA:BB:CC")
            self.assertTrue(reply["payload"][0]["serverTime"].endswith("Z"))

            dashboard.send_json({"type": "clearLogs"})
            self.assertEqual(dashboard.receive_json(), {"type": "error", "message": "Deleted 1 logs."})
            self.assertEqual(dashboard.receive_json(), {"type": "logHistory", "payload": []})

    def test_static_dashboard_is_served_alongside_websocket(self) -> None:
        static_dir = self.tmp / "public"
        static_dir.mkdir()
        (static_dir / "index.html").write_text("<h1>Pump Dashboard</h1>", encoding="utf-8")
        client = self._start(RelaySettings(database_url="sqlite://", static_dir=static_dir))

        response = client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("Pump Dashboard", response.text)
        self.assertEqual(client.get("/health").json()["status"], "ok")
        with client.websocket_connect("/") as ws:
            ws.send_json({"type": "ping"})
            self.assertEqual(ws.receive_json(), {"type": "pong"})


class RelayWithoutStoreTest(RelayApiSimulationTest):
    database_url = None

    def test_health_endpoint_reports_relay_state(self) -> None:
        payload = self.client.get("/health").json()
        self.assertFalse(payload["storeAvailable"])

    def test_uploaded_log_is_returned_by_query(self) -> None:
        with self.client.websocket_connect("/") as dashboard:
            dashboard.send_json({"type": "uploadLog", "payload": {"mac": "x", "onTime": "a", "offTime": "b", "duration": "c"}})
            dashboard.send_json({"type": "getLogs"})
            self.assertEqual(dashboard.receive_json(), {"type": "logHistory", "payload": []})


if __name__ == "__main__":
    unittest.main()
