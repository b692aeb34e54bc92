"""Live connection tracking and the single device slot."""
from __future__ import annotations

import asyncio
import itertools
import logging
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Set

from starlette.websockets import WebSocket, WebSocketState

from motorrelay.protocol import encode

logger = logging.getLogger(__name__)

_ids = itertools.count(1)


class ConnectionState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Connection:
    """A bidirectional transport session known to the registry.

    Subclasses implement :meth:`_send_text`. Sends are serialized per
    connection; a failed send leaves the connection ``CLOSED``.
    """

    def __init__(self, peer: Optional[str] = None) -> None:
        self.id = next(_ids)
        self.peer = peer or f"conn-{self.id}"
        self.is_device = False
        self.state = ConnectionState.OPEN
        self._send_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def mark_closing(self) -> None:
        if self.state is ConnectionState.OPEN:
            self.state = ConnectionState.CLOSING

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED

    async def send(self, message: Mapping[str, Any]) -> None:
        text = encode(message)
        async with self._send_lock:
            try:
                await self._send_text(text)
            except Exception:
                self.mark_closed()
                raise

    async def _send_text(self, text: str) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        role = "device" if self.is_device else "dashboard"
        return f"<{type(self).__name__} {self.peer} {role} {self.state.value}>"


class WebSocketConnection(Connection):
    """Connection backed by a Starlette/FastAPI websocket."""

    def __init__(self, websocket: WebSocket) -> None:
        client = getattr(websocket, "client", None)
        peer = f"{client.host}:{client.port}" if client else None
        super().__init__(peer)
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        if self.state is not ConnectionState.OPEN:
            return False
        return (
            self.websocket.client_state is WebSocketState.CONNECTED
            and self.websocket.application_state is WebSocketState.CONNECTED
        )

    async def _send_text(self, text: str) -> None:
        await self.websocket.send_text(text)


Predicate = Callable[[Connection], bool]


class ConnectionRegistry:
    """Set of live connections plus the at-most-one device slot."""

    def __init__(self) -> None:
        self._connections: Set[Connection] = set()
        self._device: Optional[Connection] = None

    def register(self, connection: Connection) -> None:
        self._connections.add(connection)

    def unregister(self, connection: Connection) -> bool:
        """Remove ``connection``; return True if it held the device slot."""
        self._connections.discard(connection)
        if self._device is connection:
            self.clear_device()
            return True
        return False

    def mark_as_device(self, connection: Connection) -> Optional[Connection]:
        """Give ``connection`` the device slot and return the previous holder."""
        previous = self._device
        if previous is not None and previous is not connection:
            previous.is_device = False
        connection.is_device = True
        self._device = connection
        return previous if previous is not connection else None

    def clear_device(self, expected: Optional[Connection] = None) -> None:
        """Empty the slot, only if it still holds ``expected`` when given."""
        device = self._device
        if device is None or (expected is not None and device is not expected):
            return
        device.is_device = False
        self._device = None

    def get_device(self) -> Optional[Connection]:
        return self._device

    @property
    def device_online(self) -> bool:
        return self._device is not None and self._device.is_open

    @property
    def connections(self) -> List[Connection]:
        return list(self._connections)

    def __len__(self) -> int:
        return len(self._connections)

    async def broadcast(self, message: Mapping[str, Any], predicate: Optional[Predicate] = None) -> int:
        """Send ``message`` to every open connection matching ``predicate``.

        Returns the number of successful deliveries. One recipient failing
        does not stop delivery to the others.
        """
        targets = [
            conn
            for conn in self._connections
            if conn.is_open and (predicate is None or predicate(conn))
        ]
        if not targets:
            return 0
        results = await asyncio.gather(*(conn.send(message) for conn in targets), return_exceptions=True)
        delivered = 0
        for conn, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.debug("Broadcast to %s failed: %s", conn.peer, result)
            else:
                delivered += 1
        return delivered


def not_device(connection: Connection) -> bool:
    return not connection.is_device


__all__ = [
    "Connection",
    "ConnectionRegistry",
    "ConnectionState",
    "WebSocketConnection",
    "not_device",
]
