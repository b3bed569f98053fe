import asyncio
import json
import time

from connection import Connection


class FakeWebSocket:
    """Stands in for a FastAPI WebSocket: records sent frames, replays queued inbound ones."""

    def __init__(self, inbound=None, fail_sends=False, stall_sends=False):
        self.inbound = list(inbound or [])
        self.sent = []
        self.fail_sends = fail_sends
        self.stall_sends = stall_sends
        self.closed = False

    async def receive(self):
        if not self.inbound:
            return {"type": "websocket.disconnect", "code": 1000}
        frame = self.inbound.pop(0)
        if isinstance(frame, bytes):
            return {"type": "websocket.receive", "bytes": frame}
        return {"type": "websocket.receive", "text": frame}

    async def send_text(self, data):
        if self.fail_sends:
            raise RuntimeError("socket is gone")
        if self.stall_sends:
            # A client that stopped reading: the send never completes
            await asyncio.Event().wait()
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True


class Peers:
    """Builds connections with a running writer task each, as the websocket route does."""

    def __init__(self, dispatcher):
        self.dispatcher = dispatcher
        self.connections = []
        self.writers = []

    def __call__(self, name=None, outbox_size=16, **socket_options):
        connection = Connection(FakeWebSocket(**socket_options), connection_id=name, outbox_size=outbox_size)
        self.connections.append(connection)
        self.writers.append(asyncio.create_task(self.dispatcher.write_loop(connection)))
        return connection

    async def flush(self):
        """Wait until every healthy connection has written out its outbox."""
        for connection in self.connections:
            if connection.closed or connection.websocket.stall_sends:
                continue
            await asyncio.wait_for(connection.outbox.join(), timeout=1.0)
        await asyncio.sleep(0)

    async def stop(self):
        for writer in self.writers:
            writer.cancel()
        await asyncio.gather(*self.writers, return_exceptions=True)


def sent(connection):
    return connection.websocket.sent


async def eventually(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
