"""WebSocket endpoint for live run updates."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import orjson
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

logger = logging.getLogger(__name__)


def _orjson_dumps(obj: Any) -> str:
    """Serialize object to JSON string using orjson."""
    return orjson.dumps(obj, default=str).decode("utf-8")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WebSocketMessage(BaseModel):
    """WebSocket message format."""

    type: str  # "tracker", "log", "result", "status"
    data: dict[str, Any]
    timestamp: datetime

    def to_json(self) -> str:
        return _orjson_dumps(self.model_dump())


class ConnectionManager:
    """Manage WebSocket connections and broadcasts."""

    def __init__(self):
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self._connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a disconnected WebSocket."""
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self._connections)}")

    async def broadcast(self, message: WebSocketMessage) -> None:
        """Broadcast message to all connected clients."""
        if not self._connections:
            return

        message_text = message.to_json()
        disconnected = []

        async with self._lock:
            for websocket in self._connections:
                try:
                    await websocket.send_text(message_text)
                except Exception as e:
                    logger.warning(f"Failed to send message: {e}")
                    disconnected.append(websocket)

            for ws in disconnected:
                self._connections.remove(ws)

    def publish(self, msg_type: str, data: dict[str, Any]) -> None:
        """Schedule a broadcast from synchronous code running on the event loop.

        Tracker listeners and log sinks are plain callables, so they cannot
        await the broadcast themselves.
        """
        if not self._connections:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, dropping {msg_type} message")
            return
        message = WebSocketMessage(type=msg_type, data=data, timestamp=_now())
        task = loop.create_task(self.broadcast(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send_status(self, status_data: dict) -> None:
        """Broadcast run status."""
        await self.broadcast(WebSocketMessage(type="status", data=status_data, timestamp=_now()))

    @property
    def connection_count(self) -> int:
        """Get number of active connections."""
        return len(self._connections)


# Global connection manager
manager = ConnectionManager()


async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for live run updates.

    Messages sent to clients:
    - tracker: run started / step / time / completed events
    - log: a pipeline log line
    - result: final RunResult of a run

    Message format:
    {
        "type": "tracker",
        "data": {...},
        "timestamp": "2024-01-01T00:00:00+00:00"
    }
    """
    await manager.connect(websocket)

    try:
        await websocket.send_text(_orjson_dumps({
            "type": "connected",
            "data": {"message": "Connected to invoice pipeline"},
            "timestamp": _now().isoformat(),
        }))

        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=60.0)
                try:
                    message = orjson.loads(data)
                except orjson.JSONDecodeError:
                    await websocket.send_text(_orjson_dumps({
                        "type": "error",
                        "data": {"message": "Invalid JSON"},
                        "timestamp": _now().isoformat(),
                    }))
                    continue

                if message.get("type") == "ping":
                    await websocket.send_text(_orjson_dumps({
                        "type": "pong",
                        "data": {},
                        "timestamp": _now().isoformat(),
                    }))
                else:
                    await websocket.send_text(_orjson_dumps({
                        "type": "error",
                        "data": {"message": f"Unknown message type: {message.get('type', '')}"},
                        "timestamp": _now().isoformat(),
                    }))

            except asyncio.TimeoutError:
                # Keep the connection alive
                await websocket.send_text(_orjson_dumps({
                    "type": "ping",
                    "data": {},
                    "timestamp": _now().isoformat(),
                }))

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        await manager.disconnect(websocket)
