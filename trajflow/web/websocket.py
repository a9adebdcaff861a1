"""WebSocket endpoint for session event notifications."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from trajflow.session import AnalysisSession

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks connected event clients."""

    def __init__(self):
        self.event_clients: list[WebSocket] = []
        # Strong references so scheduled broadcasts are not garbage-collected
        self.pending_broadcasts: set[asyncio.Task] = set()

    async def connect_events(self, ws: WebSocket) -> None:
        await ws.accept()
        self.event_clients.append(ws)
        logger.info("Event client connected (%d total)", len(self.event_clients))

    def disconnect_events(self, ws: WebSocket) -> None:
        if ws in self.event_clients:
            self.event_clients.remove(ws)
        logger.info("Event client disconnected (%d remaining)",
                    len(self.event_clients))

    async def broadcast_event(self, data: dict) -> None:
        """Broadcast a JSON event to all event clients."""
        message = json.dumps(data)
        disconnected = []
        for ws in self.event_clients:
            try:
                await ws.send_text(message)
            except Exception:
                disconnected.append(ws)
        for ws in disconnected:
            self.disconnect_events(ws)

    def schedule_broadcast(self, data: dict) -> asyncio.Task | None:
        """Schedule a broadcast on the running loop; no loop means no clients."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        task = loop.create_task(self.broadcast_event(data))
        self.pending_broadcasts.add(task)
        task.add_done_callback(self.pending_broadcasts.discard)
        return task


def create_ws_router(session: AnalysisSession) -> APIRouter:
    router = APIRouter()
    manager = ConnectionManager()

    session.add_event_callback(manager.schedule_broadcast)

    @router.websocket("/ws/events")
    async def ws_events(ws: WebSocket):
        """JSON event notifications via WebSocket."""
        await manager.connect_events(ws)
        try:
            while True:
                # Keep connection alive; events pushed via broadcast
                await ws.receive_text()
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Events WebSocket error")
        finally:
            manager.disconnect_events(ws)

    return router
