"""Codec classification tests."""
from __future__ import annotations

import json
import unittest

from motorrelay import protocol
from motorrelay.errors import MalformedMessage, UnknownMessageType
from motorrelay.protocol import MessageType


class DecodeTest(unittest.TestCase):
    def test_decodes_command_envelope(self) -> None:
        envelope = protocol.decode('{"type":"command","command":"MOTOR_ON","value":1}')
        self.assertIs(envelope.type, MessageType.COMMAND)
        self.assertEqual(envelope.command, "MOTOR_ON")
        self.assertEqual(envelope.value, 1)
        self.assertIsNone(envelope.payload)
        self.assertEqual(envelope.raw, {"type": "command", "command": "MOTOR_ON", "value": 1})

    def test_accepts_bytes_frames(self) -> None:
        envelope = protocol.decode(b'{"type":"esp32-identify"}')
        self.assertIs(envelope.type, MessageType.IDENTIFY)

    def test_both_delete_aliases_are_routed(self) -> None:
        self.assertIs(protocol.decode('{"type":"clearLogs"}').type, MessageType.CLEAR_LOGS)
        self.assertIs(protocol.decode('{"type":"deleteLogs"}').type, MessageType.DELETE_LOGS)

    def test_non_object_payload_is_dropped_but_raw_kept(self) -> None:
        envelope = protocol.decode('{"type":"getLogs","payload":[1,2]}')
        self.assertIsNone(envelope.payload)
        self.assertEqual(envelope.payload_dict(), {})
        self.assertEqual(envelope.raw["payload"], [1, 2])

    def test_rejects_invalid_json(self) -> None:
        with self.assertRaises(MalformedMessage):
            protocol.decode("{not json")

    def test_rejects_non_object_and_missing_type(self) -> None:
        for frame in ("[1, 2]", '"ping"', "42", '{"command":"MOTOR_ON"}', '{"type": 5}'):
            with self.subTest(frame=frame):
                with self.assertRaises(MalformedMessage):
                    protocol.decode(frame)

    def test_unknown_type_is_a_distinct_malformed_message(self) -> None:
        with self.assertRaises(UnknownMessageType) as ctx:
            protocol.decode('{"type":"reboot"}')
        self.assertIsInstance(ctx.exception, MalformedMessage)
        self.assertEqual(ctx.exception.message_type, "reboot")

    def test_rejects_invalid_utf8(self) -> None:
        with self.assertRaises(MalformedMessage):
            protocol.decode(b"\xff\xfe")

    def test_deeply_nested_frame_is_malformed(self) -> None:
        with self.assertRaises(MalformedMessage):
            protocol.decode("[" * 100000 + "]" * 100000)


class ReplyBuilderTest(unittest.TestCase):
    def test_encode_is_compact_json(self) -> None:
        text = protocol.encode(protocol.pong())
        self.assertEqual(text, '{"type":"pong"}')
        self.assertNotIn("\n", protocol.encode(protocol.log_history([{"a": 1}])))

    def test_reply_shapes(self) -> None:
        self.assertEqual(protocol.error("Boom"), {"type": "error", "message": "Boom"})
        self.assertEqual(protocol.server_status(1), {"type": "serverStatus", "deviceOnline": True})
        self.assertEqual(protocol.status_update({"motorStatus": "ON"})["type"], "statusUpdate")
        self.assertEqual(
            json.loads(protocol.encode(protocol.force_status_update())),
            {"type": "command", "command": "FORCE_STATUS_UPDATE", "value": 1},
        )


if __name__ == "__main__":
    unittest.main()
