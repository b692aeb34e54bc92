"""Simulated pump controller that speaks the relay protocol.

Useful for exercising a relay and its dashboards without hardware: it keeps
a websocket open with exponential backoff, identifies itself, publishes
periodic status and answers forwarded commands.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from time import monotonic
from typing import Any, AsyncContextManager, Callable, Dict, List, Mapping, Optional

import websockets

from motorrelay.protocol import FORCE_STATUS_UPDATE, MessageType

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

Connect = Callable[[str], AsyncContextManager[Any]]


def format_duration(seconds: float) -> str:
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


@dataclass(slots=True)
class DeviceState:
    motor_status: str = "OFF"
    system_mode: str = "MANUAL"
    door_status: str = "CLOSED"
    last_action: str = "BOOT"
    wifi_signal: int = -60
    local_ip: str = "0.0.0.0"
    ws_host: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {
            "motorStatus": self.motor_status,
            "systemMode": self.system_mode,
            "doorStatus": self.door_status,
            "lastAction": self.last_action,
            "wifiSignal": self.wifi_signal,
            "localIP": self.local_ip,
            "wsHost": self.ws_host,
        }


class DeviceAgent:
    """Maintain a relay session on behalf of one simulated controller."""

    def __init__(
        self,
        url: str,
        *,
        mac: str = "24:0A:C4:00:00:01",
        status_interval: float = 5.0,
        base_backoff: float = 2.0,
        max_backoff: float = 60.0,
        connect: Optional[Connect] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.url = url
        self.mac = mac
        self.status_interval = max(0.01, status_interval)
        self.base_backoff = max(0.01, base_backoff)
        self.max_backoff = max(self.base_backoff, max_backoff)
        self.state = DeviceState(ws_host=url)
        self.sessions = 0
        self._connect: Connect = connect or websockets.connect
        self._clock = clock or datetime.now
        self._motor_on_since: Optional[datetime] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._send_lock = asyncio.Lock()

    def status_message(self) -> Dict[str, Any]:
        return {"type": MessageType.STATUS_UPDATE.value, "payload": self.state.to_payload()}

    def identify_message(self) -> Dict[str, Any]:
        return {"type": MessageType.IDENTIFY.value, "mac": self.mac}

    def handle_command(self, message: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """Apply a forwarded command and return the messages to send back."""
        command = message.get("command")
        value = message.get("value")
        outbound: List[Dict[str, Any]] = []

        if command == "MOTOR_ON" or (command == "MOTOR" and value):
            if self._motor_on_since is None:
                self._motor_on_since = self._clock()
            self.state.motor_status = "ON"
            self.state.last_action = "MOTOR_ON"
        elif command in ("MOTOR_OFF", "MOTOR"):
            started = self._motor_on_since
            self._motor_on_since = None
            self.state.motor_status = "OFF"
            self.state.last_action = "MOTOR_OFF"
            if started is not None:
                outbound.append(self._duty_cycle_message(started, self._clock()))
        elif command == "SET_MODE":
            self.state.system_mode = "AUTO" if value == 1 else "MANUAL"
            self.state.last_action = f"MODE_{self.state.system_mode}"
        elif command == FORCE_STATUS_UPDATE:
            pass
        else:
            logger.debug("Ignoring unknown command %r", command)
            return outbound

        outbound.append(self.status_message())
        return outbound

    def handle_text(self, text: str | bytes) -> List[Dict[str, Any]]:
        try:
            message = json.loads(text)
        except ValueError:
            logger.warning("Agent received non-JSON frame")
            return []
        if not isinstance(message, dict):
            return []
        if "command" in message:
            return self.handle_command(message)
        if message.get("type") == "error":
            logger.warning("Relay reported error: %s", message.get("message"))
        return []

    async def run(self, runtime: Optional[float] = None) -> None:
        """Keep a session open until stopped or ``runtime`` elapses."""
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        deadline = monotonic() + runtime if runtime else None
        backoff = self.base_backoff
        attempt = 0

        try:
            while not stop_event.is_set():
                if deadline and monotonic() >= deadline:
                    break
                attempt += 1
                try:
                    async with self._connect(self.url) as ws:
                        self.sessions += 1
                        logger.info("Agent connected to %s (attempt %d)", self.url, attempt)
                        backoff = self.base_backoff
                        await self._session(ws, deadline, stop_event)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.warning("Agent session error for %s: %s", self.url, exc)

                if stop_event.is_set():
                    break
                if deadline and monotonic() >= deadline:
                    break
                await self._sleep_with_stop(backoff, stop_event, deadline)
                backoff = min(backoff * 2, self.max_backoff)
        finally:
            stop_event.set()

    def request_stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()

    async def _session(self, ws: Any, deadline: Optional[float], stop_event: asyncio.Event) -> None:
        await self._send(ws, self.identify_message())
        await self._send(ws, self.status_message())
        reader = asyncio.create_task(self._read_loop(ws))
        stopper = asyncio.create_task(stop_event.wait())
        try:
            while True:
                timeout = self.status_interval
                if deadline:
                    timeout = min(timeout, deadline - monotonic())
                    if timeout <= 0:
                        break
                done, _ = await asyncio.wait(
                    {reader, stopper},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if stopper in done:
                    break
                if reader in done:
                    reader.result()
                    logger.info("Relay closed the session")
                    break
                await self._send(ws, self.status_message())
        finally:
            for task in (reader, stopper):
                task.cancel()
            await asyncio.gather(reader, stopper, return_exceptions=True)

    async def _read_loop(self, ws: Any) -> None:
        async for text in ws:
            for message in self.handle_text(text):
                await self._send(ws, message)

    async def _send(self, ws: Any, message: Mapping[str, Any]) -> None:
        async with self._send_lock:
            await ws.send(json.dumps(message, separators=(",", ":")))

    def _duty_cycle_message(self, started: datetime, stopped: datetime) -> Dict[str, Any]:
        return {
            "type": MessageType.UPLOAD_LOG.value,
            "payload": {
                "mac": self.mac,
                "onTime": started.strftime(TIME_FORMAT),
                "offTime": stopped.strftime(TIME_FORMAT),
                "duration": format_duration((stopped - started).total_seconds()),
            },
        }

    async def _sleep_with_stop(
        self,
        duration: float,
        stop_event: asyncio.Event,
        deadline: Optional[float],
    ) -> None:
        wait_time = duration
        if deadline:
            wait_time = min(wait_time, max(0.0, deadline - monotonic()))
        if wait_time <= 0:
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=wait_time)


__all__ = ["DeviceAgent", "DeviceState", "format_duration"]
