"""
web_feed.py — Live alert feed for dashboards over WebSocket.

The web-display channel is not per-recipient: a published alert is pushed
once to every connected dashboard. Each connection gets a bounded queue
and its own writer task so a slow client never stalls the dispatcher;
a client whose queue overflows is disconnected.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Dict

from fastapi import WebSocket

from bantay.app.alerts.models import AlertPayload

logger = logging.getLogger(__name__)


class AlertFeedHub:
    """Active WebSocket connections with backpressure and heartbeat."""

    def __init__(self, max_connections: int = 200, queue_size: int = 50, heartbeat_interval: int = 30):
        self._connections: Dict[WebSocket, asyncio.Queue] = {}
        self._writer_tasks: Dict[WebSocket, asyncio.Task] = {}
        self._max_connections = max_connections
        self._queue_size = queue_size
        self._heartbeat_interval = heartbeat_interval

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> bool:
        """Accept the connection if under the limit."""
        if len(self._connections) >= self._max_connections:
            await websocket.close(code=1013)  # Try Again Later
            logger.warning("Feed connection rejected: %d connections open", len(self._connections))
            return False
        await websocket.accept()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._connections[websocket] = queue
        self._writer_tasks[websocket] = asyncio.create_task(self._writer(websocket, queue))
        logger.info("Feed client connected (%d total)", len(self._connections))
        return True

    async def disconnect(self, websocket: WebSocket) -> None:
        self._connections.pop(websocket, None)
        task = self._writer_tasks.pop(websocket, None)
        if task and not task.done():
            task.cancel()
        try:
            await websocket.close()
        except Exception as exc:
            logger.debug("Feed close failed: %s", exc)
        logger.info("Feed client disconnected (%d total)", len(self._connections))

    async def broadcast(self, message: dict) -> int:
        """Enqueue a message for every connection; returns how many got it."""
        text = json.dumps(message, default=str)
        delivered = 0
        overflowed = []
        for ws, queue in list(self._connections.items()):
            try:
                queue.put_nowait(text)
                delivered += 1
            except asyncio.QueueFull:
                overflowed.append(ws)
        for ws in overflowed:
            logger.warning("Feed client too slow, disconnecting")
            await self.disconnect(ws)
        return delivered

    async def publish_alert(self, payload: AlertPayload) -> int:
        return await self.broadcast({
            "type": "alert.published",
            "alert": payload.to_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def close_all(self) -> None:
        for ws in list(self._connections):
            await self.disconnect(ws)

    async def _writer(self, websocket: WebSocket, queue: asyncio.Queue) -> None:
        try:
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=self._heartbeat_interval)
                except asyncio.TimeoutError:
                    message = json.dumps({
                        "type": "heartbeat",
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    })
                await websocket.send_text(message)
        except asyncio.CancelledError:
            return
        except Exception as exc:
            logger.debug("Feed writer stopped: %s", exc)
