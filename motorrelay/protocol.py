"""Wire codec for the relay's tagged JSON envelopes.

Every frame is a single JSON object carrying a string ``type`` field.
Decoding only checks that shape; each dispatcher handler validates the
fields its message type needs.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from motorrelay.errors import MalformedMessage, UnknownMessageType


class MessageType(str, Enum):
    """Inbound message types routed by the relay."""

    IDENTIFY = "esp32-identify"
    UPLOAD_LOG = "uploadLog"
    GET_LOGS = "getLogs"
    CLEAR_LOGS = "clearLogs"
    DELETE_LOGS = "deleteLogs"
    STATUS_UPDATE = "statusUpdate"
    COMMAND = "command"
    PING = "ping"
    REQUEST_STATUS = "requestStatus"


# Reply tags emitted by the relay.
LOG_HISTORY = "logHistory"
ERROR = "error"
STATUS_UPDATE = MessageType.STATUS_UPDATE.value
PONG = "pong"
SERVER_STATUS = "serverStatus"

FORCE_STATUS_UPDATE = "FORCE_STATUS_UPDATE"

_TYPES_BY_TAG: Dict[str, MessageType] = {member.value: member for member in MessageType}


@dataclass(slots=True)
class Envelope:
    """A decoded inbound frame."""

    type: MessageType
    payload: Optional[Dict[str, Any]] = None
    command: Optional[str] = None
    value: Any = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def payload_dict(self) -> Dict[str, Any]:
        return self.payload if isinstance(self.payload, dict) else {}


def decode(frame: Union[str, bytes, bytearray]) -> Envelope:
    """Parse ``frame`` into an :class:`Envelope`.

    Raises:
        MalformedMessage: the frame is not a JSON object with a string ``type``.
        UnknownMessageType: the ``type`` is not one the relay routes.
    """
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedMessage(f"frame is not UTF-8: {exc}", frame) from exc
    try:
        data = json.loads(frame)
    except (TypeError, ValueError, RecursionError) as exc:
        raise MalformedMessage(f"invalid JSON: {exc}", frame) from exc
    if not isinstance(data, dict):
        raise MalformedMessage("envelope must be a JSON object", frame)

    tag = data.get("type")
    if not isinstance(tag, str):
        raise MalformedMessage("envelope has no string 'type'", frame)
    message_type = _TYPES_BY_TAG.get(tag)
    if message_type is None:
        raise UnknownMessageType(tag, frame)

    payload = data.get("payload")
    command = data.get("command")
    return Envelope(
        type=message_type,
        payload=payload if isinstance(payload, dict) else None,
        command=command if isinstance(command, str) else None,
        value=data.get("value"),
        raw=data,
    )


def encode(message: Mapping[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False, default=str)


def log_history(entries: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    return {"type": LOG_HISTORY, "payload": list(entries)}


def error(message: str) -> Dict[str, Any]:
    return {"type": ERROR, "message": message}


def status_update(payload: Any) -> Dict[str, Any]:
    return {"type": STATUS_UPDATE, "payload": payload}


def pong() -> Dict[str, Any]:
    return {"type": PONG}


def server_status(device_online: bool) -> Dict[str, Any]:
    return {"type": SERVER_STATUS, "deviceOnline": bool(device_online)}


def force_status_update() -> Dict[str, Any]:
    return {"type": MessageType.COMMAND.value, "command": FORCE_STATUS_UPDATE, "value": 1}


__all__ = [
    "MessageType",
    "Envelope",
    "decode",
    "encode",
    "log_history",
    "error",
    "status_update",
    "pong",
    "server_status",
    "force_status_update",
    "LOG_HISTORY",
    "ERROR",
    "STATUS_UPDATE",
    "PONG",
    "SERVER_STATUS",
    "FORCE_STATUS_UPDATE",
]
