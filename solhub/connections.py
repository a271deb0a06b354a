import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Open sockets, each drained by its own sender task.

    emit() and broadcast() only enqueue, so a slow peer never stalls the
    handler that produced the event. Each peer still sees events in the order
    they were enqueued.
    """

    def __init__(self):
        self.connected_peers: Dict[str, WebSocket] = {}
        self._outboxes: Dict[str, asyncio.Queue] = {}
        self._senders: Dict[str, asyncio.Task] = {}

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        outbox = asyncio.Queue()
        self.connected_peers[connection_id] = websocket
        self._outboxes[connection_id] = outbox
        self._senders[connection_id] = asyncio.create_task(self._drain(connection_id, websocket, outbox))
        logger.info(f"User connected: {connection_id}")
        logger.info(f"Total connections: {self.count()}")
        return connection_id

    async def disconnect(self, connection_id: str):
        self.connected_peers.pop(connection_id, None)
        self._outboxes.pop(connection_id, None)
        sender = self._senders.pop(connection_id, None)
        if sender is not None:
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass

    async def _drain(self, connection_id: str, websocket: WebSocket, outbox: asyncio.Queue):
        while True:
            frame = await outbox.get()
            try:
                await websocket.send_json(frame)
            except Exception as e:
                # The receive loop notices the closed socket and runs the disconnect path.
                logger.warning(f"Failed to send to {connection_id}: {e}")
                return

    def emit(self, connection_id: str, event: str, data: Any):
        outbox = self._outboxes.get(connection_id)
        if outbox is not None:
            outbox.put_nowait({'event': event, 'data': data})

    def broadcast(self, event: str, data: Any, exclude: Optional[str] = None):
        for connection_id in list(self._outboxes):
            if connection_id != exclude:
                self.emit(connection_id, event, data)

    def count(self) -> int:
        return len(self.connected_peers)
