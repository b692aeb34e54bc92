"""Exception taxonomy shared by the codec, the store and the dispatcher."""
from __future__ import annotations


class RelayError(Exception):
    """Base class for every error raised inside the relay."""


class ConfigError(RelayError, ValueError):
    """Raised when an environment setting has an unusable value."""


class MalformedMessage(RelayError):
    """A frame could not be turned into an envelope."""

    def __init__(self, reason: str, frame: object = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.frame = frame


class UnknownMessageType(MalformedMessage):
    """The frame was valid JSON but carried a type the relay does not route."""

    def __init__(self, message_type: str, frame: object = None) -> None:
        super().__init__(f"unknown message type {message_type!r}", frame)
        self.message_type = message_type


class InvalidDateRange(RelayError, ValueError):
    """A startDate/endDate value is not an ISO date."""


class StoreUnavailable(RelayError):
    """The log store is not connected."""


class StoreOperationFailed(RelayError):
    """The log store was reachable but the operation raised."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.__cause__ = cause


class DeviceUnreachable(RelayError):
    """A command could not be delivered to the device."""

    reply_message = "Device Unreachable."


class DeviceAbsent(DeviceUnreachable):
    reply_message = "Device Offline (No Socket)."


class DeviceClosed(DeviceUnreachable):
    reply_message = "Device Disconnected (Socket Closed)."


class RecipientNotDevice(RelayError):
    """A device-only message arrived from a dashboard connection."""


__all__ = [
    "RelayError",
    "ConfigError",
    "MalformedMessage",
    "UnknownMessageType",
    "InvalidDateRange",
    "StoreUnavailable",
    "StoreOperationFailed",
    "DeviceUnreachable",
    "DeviceAbsent",
    "DeviceClosed",
    "RecipientNotDevice",
]
