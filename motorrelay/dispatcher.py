"""Routes inbound envelopes to the store, the device or the dashboards."""
from __future__ import annotations

import contextlib
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from motorrelay import protocol
from motorrelay.config import IdentifyPolicy, LogQueryPolicy, RelaySettings
from motorrelay.errors import (
    DeviceAbsent,
    DeviceClosed,
    DeviceUnreachable,
    InvalidDateRange,
    MalformedMessage,
    StoreOperationFailed,
    StoreUnavailable,
    UnknownMessageType,
)
from motorrelay.journal import RelayJournal
from motorrelay.models import DateRangeQuery, DutyCycleLogEntry
from motorrelay.protocol import Envelope, MessageType
from motorrelay.registry import Connection, ConnectionRegistry, not_device
from motorrelay.store import LogStore

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Envelope], Awaitable[None]]


class RelayDispatcher:
    """Per-message routing for the relay.

    Handlers never raise into the transport loop: every failure becomes a
    log line, a typed ``error`` reply, or both. Only the registry carries
    state between messages.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: LogStore,
        *,
        settings: Optional[RelaySettings] = None,
        journal: Optional[RelayJournal] = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.settings = settings or RelaySettings()
        self.journal = journal
        self._handlers: Dict[MessageType, Handler] = {
            MessageType.IDENTIFY: self._on_identify,
            MessageType.UPLOAD_LOG: self._on_upload_log,
            MessageType.GET_LOGS: self._on_get_logs,
            MessageType.CLEAR_LOGS: self._on_delete_logs,
            MessageType.DELETE_LOGS: self._on_delete_logs,
            MessageType.STATUS_UPDATE: self._on_status_update,
            MessageType.COMMAND: self._on_command,
            MessageType.PING: self._on_ping,
            MessageType.REQUEST_STATUS: self._on_request_status,
        }
        missing = [member.value for member in MessageType if member not in self._handlers]
        if missing:
            raise RuntimeError(f"no handler for message types: {', '.join(missing)}")

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def on_connect(self, connection: Connection) -> None:
        self.registry.register(connection)
        logger.info("Client connected (%s), %d live", connection.peer, len(self.registry))
        await self._record("connect", connection, status="ok")

    async def on_disconnect(self, connection: Connection) -> None:
        connection.mark_closed()
        if self.registry.unregister(connection):
            logger.info("Device disconnected (%s)", connection.peer)
            await self._record("disconnect", connection, status="device")
        else:
            logger.info("Client disconnected (%s)", connection.peer)
            await self._record("disconnect", connection, status="dashboard")

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------
    async def handle_frame(self, sender: Connection, frame: Union[str, bytes]) -> None:
        try:
            envelope = protocol.decode(frame)
        except UnknownMessageType as exc:
            logger.debug("Ignoring frame from %s: %s", sender.peer, exc)
            return
        except MalformedMessage as exc:
            logger.warning("Dropped malformed frame from %s: %s", sender.peer, exc.reason)
            return
        await self.dispatch(sender, envelope)

    async def dispatch(self, sender: Connection, envelope: Envelope) -> None:
        handler = self._handlers[envelope.type]
        try:
            await handler(sender, envelope)
        except Exception:
            logger.exception("Handler for %s from %s failed", envelope.type.value, sender.peer)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    async def _on_identify(self, sender: Connection, envelope: Envelope) -> None:
        current = self.registry.get_device()
        if (
            self.settings.identify_policy is IdentifyPolicy.REJECT
            and current is not None
            and current is not sender
            and current.is_open
        ):
            logger.warning("Refused identify from %s: device already on %s", sender.peer, current.peer)
            await self._record("identify", sender, status="rejected")
            await self._reply(sender, protocol.error("Device Already Registered."))
            return

        previous = self.registry.mark_as_device(sender)
        if previous is not None:
            logger.warning("Device slot moved from %s to %s", previous.peer, sender.peer)
        logger.info("Device connected (%s)", sender.peer)
        await self._record("identify", sender, status="ok")

    async def _on_upload_log(self, sender: Connection, envelope: Envelope) -> None:
        try:
            entry = DutyCycleLogEntry.from_payload(envelope.payload_dict())
        except ValueError as exc:
            logger.warning("Dropped uploadLog from %s: %s", sender.peer, exc)
            return
        logger.info("Log received from %s: %s", entry.mac, entry.duration)
        try:
            with self._timer("log_upload", sender, extra={"mac": entry.mac}):
                stored = await self.store.create_async(entry)
        except StoreUnavailable:
            logger.error("Log dropped: store not connected")
            return
        except StoreOperationFailed as exc:
            logger.error("Log save failed: %s", exc)
            return
        logger.info("Log saved (id=%s)", stored.id)

    async def _on_get_logs(self, sender: Connection, envelope: Envelope) -> None:
        query = await self._date_range(sender, envelope)
        if query is None:
            return
        if self.settings.log_query_policy is LogQueryPolicy.STRICT and not query.is_complete:
            logger.warning("Log fetch denied for %s: missing date range", sender.peer)
            await self._reply(sender, protocol.error("Date Range Required"))
            return
        try:
            with self._timer("log_query", sender) as info:
                entries = await self.store.find_async(query)
                info["count"] = len(entries)
        except StoreUnavailable:
            entries = []
        except StoreOperationFailed as exc:
            logger.error("Log query failed: %s", exc)
            await self._reply(sender, protocol.error("Database Error. Check Server Logs."))
            return
        await self._reply(sender, protocol.log_history(entry.to_dict() for entry in entries))

    async def _on_delete_logs(self, sender: Connection, envelope: Envelope) -> None:
        query = await self._date_range(sender, envelope)
        if query is None:
            return
        try:
            with self._timer("log_delete", sender) as info:
                deleted = await self.store.delete_many_async(query)
                info["count"] = deleted
        except StoreUnavailable:
            logger.warning("Log delete skipped: store not connected")
            await self._reply(sender, protocol.error("Database Unavailable."))
            return
        except StoreOperationFailed as exc:
            logger.error("Log delete failed: %s", exc)
            await self._reply(sender, protocol.error("Delete Failed."))
            return

        logger.info("Deleted %d logs", deleted)
        # The dashboard shows error-typed messages as toasts.
        await self._reply(sender, protocol.error(f"Deleted {deleted} logs."))
        if query.is_unrestricted:
            await self._reply(sender, protocol.log_history([]))

    async def _on_status_update(self, sender: Connection, envelope: Envelope) -> None:
        if self.registry.get_device() is not sender:
            logger.debug("Ignoring statusUpdate from non-device %s", sender.peer)
            return
        message = protocol.status_update(envelope.raw.get("payload"))
        delivered = await self.registry.broadcast(message, not_device)
        logger.debug("statusUpdate delivered to %d dashboards", delivered)
        await self._record("status_broadcast", sender, status="ok", extra={"delivered": delivered})

    async def _on_command(self, sender: Connection, envelope: Envelope) -> None:
        logger.info("[CMD] Received: %s Value: %s", envelope.command, envelope.value)
        try:
            await self._forward_to_device(envelope.raw)
        except DeviceUnreachable as exc:
            logger.warning("[CMD] Failed: %s", exc.reply_message)
            await self._record(
                "command_forward",
                sender,
                status="error",
                message=exc.reply_message,
                extra={"command": envelope.command},
            )
            await self._reply(sender, protocol.error(exc.reply_message))
            return
        logger.info("[CMD] Forwarded %s to device", envelope.command)
        await self._record("command_forward", sender, status="ok", extra={"command": envelope.command})

    async def _on_ping(self, sender: Connection, envelope: Envelope) -> None:
        await self._reply(sender, protocol.pong())

    async def _on_request_status(self, sender: Connection, envelope: Envelope) -> None:
        online = self.registry.device_online
        await self._reply(sender, protocol.server_status(online))
        if not online:
            return
        try:
            await self._forward_to_device(protocol.force_status_update())
        except DeviceUnreachable as exc:
            logger.warning("Status refresh not delivered: %s", exc.reply_message)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _forward_to_device(self, message: Mapping[str, Any]) -> Connection:
        device = self.registry.get_device()
        if device is None:
            raise DeviceAbsent()
        if not device.is_open:
            self._evict(device, f"state {device.state.value}")
            raise DeviceClosed()
        try:
            await device.send(message)
        except Exception as exc:
            self._evict(device, str(exc) or type(exc).__name__)
            raise DeviceClosed() from exc
        return device

    def _evict(self, device: Connection, reason: str) -> None:
        logger.warning("Evicting stale device connection %s (%s)", device.peer, reason)
        self.registry.clear_device(expected=device)

    async def _date_range(self, sender: Connection, envelope: Envelope) -> Optional[DateRangeQuery]:
        try:
            return DateRangeQuery.from_payload(envelope.payload_dict())
        except InvalidDateRange as exc:
            logger.warning("Bad date range from %s: %s", sender.peer, exc)
            await self._reply(sender, protocol.error("Invalid Date Range."))
            return None

    async def _reply(self, sender: Connection, message: Mapping[str, Any]) -> None:
        try:
            await sender.send(message)
        except Exception as exc:
            logger.debug("Reply to %s not delivered: %s", sender.peer, exc)

    def _timer(self, event: str, sender: Connection, extra: Optional[Dict[str, Any]] = None):
        if self.journal is None:
            return contextlib.nullcontext({})
        return self.journal.timer(event, connection=sender.peer, extra=extra)

    async def _record(self, event: str, connection: Connection, **kwargs: Any) -> None:
        if self.journal is None:
            return
        try:
            await self.journal.log_async(event, connection=connection.peer, **kwargs)
        except Exception:  # pragma: no cover - I/O failure safeguard
            logger.debug("Journal write failed for %s", event, exc_info=True)


__all__ = ["RelayDispatcher"]
