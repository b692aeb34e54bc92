from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.staticfiles import StaticFiles

from motorrelay import __version__
from motorrelay.config import RelaySettings
from motorrelay.dispatcher import RelayDispatcher
from motorrelay.journal import RelayJournal
from motorrelay.registry import ConnectionRegistry, WebSocketConnection
from motorrelay.store import LogStore

logger = logging.getLogger("motorrelay.api")


def create_app(
    settings: Optional[RelaySettings] = None,
    *,
    store: Optional[LogStore] = None,
    registry: Optional[ConnectionRegistry] = None,
    journal: Optional[RelayJournal] = None,
) -> FastAPI:
    """Build the relay application.

    The log store is connected in the lifespan hook, so a missing or broken
    database only disables persistence; the relay still starts.
    """
    settings = settings or RelaySettings.from_env()
    store = store if store is not None else LogStore(settings.database_url)
    registry = registry if registry is not None else ConnectionRegistry()
    if journal is None and settings.journal_path is not None:
        journal = RelayJournal(settings.journal_path)
    dispatcher = RelayDispatcher(registry, store, settings=settings, journal=journal)

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI):
        if not await asyncio.to_thread(store.connect):
            logger.warning("Log store unavailable; duty-cycle logs will not be saved")
        try:
            yield
        finally:
            store.close()

    app = FastAPI(title="Motor Relay", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.dispatcher = dispatcher

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "time": time.time(),
            "deviceOnline": registry.device_online,
            "clients": len(registry),
            "storeAvailable": store.available,
        }

    @app.websocket("/")
    @app.websocket("/ws")
    async def relay(ws: WebSocket):
        await ws.accept()
        connection = WebSocketConnection(ws)
        await dispatcher.on_connect(connection)
        try:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    break
                frame = message.get("text")
                if frame is None:
                    frame = message.get("bytes")
                if frame is None:
                    continue
                await dispatcher.handle_frame(connection, frame)
        except WebSocketDisconnect:
            pass
        finally:
            await dispatcher.on_disconnect(connection)

    if settings.static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(settings.static_dir), html=True), name="dashboard")
    else:
        logger.info("Static directory %s not found; dashboard not served", settings.static_dir)

    return app


app = create_app()
