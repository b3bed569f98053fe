import asyncio
import enum
import json
import uuid
from typing import AsyncIterator, Optional

from fastapi import WebSocket

from constants import OUTBOX_SIZE
from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionState(str, enum.Enum):
    CONNECTED = "connected"
    JOINED = "joined"
    CLOSED = "closed"


class Connection:
    """One accepted websocket client.

    Owns no protocol logic: it reads frames, writes JSON frames and tracks
    which room (if any) the client last joined.
    """

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None, outbox_size: int = OUTBOX_SIZE):
        self.websocket = websocket
        self.id = connection_id or str(uuid.uuid4())
        self.room_id: Optional[str] = None
        self.username: Optional[str] = None
        self.state = ConnectionState.CONNECTED
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)

    def __repr__(self) -> str:
        return f"<Connection {self.id[:8]} state={self.state.value} room={self.room_id}>"

    @property
    def closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    def joined(self, room_id: str, username: Optional[str] = None):
        self.room_id = room_id
        if username:
            self.username = username
        self.state = ConnectionState.JOINED

    def mark_closed(self):
        self.state = ConnectionState.CLOSED

    async def messages(self) -> AsyncIterator[str]:
        """Yield inbound frames as text until the client goes away.

        Binary frames are decoded as UTF-8 so that they reach the decoder and are
        rejected there like any other malformed frame.
        """
        while not self.closed:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.debug(f"Connection {self.id} disconnected with code {message.get('code')}")
                return
            text = message.get("text")
            if text is None:
                text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            yield text

    def enqueue(self, payload: dict):
        """Queue a frame for the writer task. Raises when closed or when the outbox is full."""
        if self.closed:
            raise ConnectionError(f"connection {self.id} is closed")
        try:
            self.outbox.put_nowait(payload)
        except asyncio.QueueFull:
            raise ConnectionError(f"outbox of connection {self.id} is full") from None

    async def send(self, payload: dict):
        if self.closed:
            raise ConnectionError(f"connection {self.id} is closed")
        await self.websocket.send_text(json.dumps(payload))

    async def close(self):
        self.mark_closed()
        try:
            await self.websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket for connection {self.id}: {e}")
