"""Protocol rules of the signaling relay.

``plan`` maps an inbound message to the room-state change it causes and the
frames it produces, without touching a socket. ``handle`` wraps it with the
registry lock and hands the frames to ``deliver``, which queues them on each
target's outbox; ``write_loop`` drains one outbox per connection.
"""
from typing import Callable, Dict, List, NamedTuple

from backend import Room, RoomRegistry
from connection import Connection
from logging_config import get_logger
from schemas.messages import (
    ANSWER,
    CHAT_MESSAGE,
    ICE_CANDIDATE,
    JOIN,
    MUTE_EVERYONE,
    MUTE_USER,
    OFFER,
    RAISE_HAND,
    JoinMessage,
    Message,
    OfferMessage,
)

logger = get_logger(__name__)

# Kinds that are only fanned out to the rest of the room, never remembered
BROADCAST_KINDS = (ANSWER, ICE_CANDIDATE, RAISE_HAND, MUTE_EVERYONE, MUTE_USER, CHAT_MESSAGE)


class Delivery(NamedTuple):
    target: Connection
    payload: dict


class RelayDispatcher:
    def __init__(self, registry: RoomRegistry):
        self.registry = registry
        self._handlers: Dict[str, Callable[[Connection, Message], List[Delivery]]] = {
            JOIN: self._on_join,
            OFFER: self._on_offer,
        }
        for kind in BROADCAST_KINDS:
            self._handlers[kind] = self._on_broadcast

    async def handle(self, connection: Connection, message: Message):
        async with self.registry.lock:
            deliveries = self.plan(connection, message)
        await self.deliver(deliveries)

    def plan(self, connection: Connection, message: Message) -> List[Delivery]:
        """Apply ``message`` to the registry and return the frames it produces.

        Must be called with ``registry.lock`` held.
        """
        if connection.closed:
            logger.debug(f"Ignoring {message.type} from closed connection {connection.id}")
            return []

        handler = self._handlers.get(message.type)
        if handler is None:
            logger.warning(f"Ignoring unknown message kind {message.type!r} from connection {connection.id}")
            return []
        return handler(connection, message)

    async def deliver(self, deliveries: List[Delivery]):
        """Queue every frame on its target's outbox and move on.

        A target whose outbox is closed or full is dropped from its room.
        """
        failed = []
        for delivery in deliveries:
            try:
                delivery.target.enqueue(delivery.payload)
            except ConnectionError as e:
                logger.warning(f"Error queueing frame for connection {delivery.target.id} in room {delivery.target.room_id}: {e}")
                failed.append(delivery.target)
        if deliveries:
            logger.debug(f"Queued {len(deliveries) - len(failed)} of {len(deliveries)} frame(s)")

        for target in failed:
            await self.disconnect(target)
            await target.close()

    async def write_loop(self, connection: Connection):
        """Drain ``connection``'s outbox onto its socket, one frame at a time.

        Runs as its own task so a client that stops reading only holds up its
        own frames. A failed send drops the connection from its room.
        """
        while not connection.closed:
            payload = await connection.outbox.get()
            try:
                await connection.send(payload)
            except Exception as e:
                if not connection.closed:
                    logger.warning(f"Error sending to connection {connection.id} in room {connection.room_id}: {e}")
                await self.disconnect(connection)
                await connection.close()
            finally:
                connection.outbox.task_done()

    async def disconnect(self, connection: Connection):
        """Remove ``connection`` from its room for good. Safe to call more than once."""
        async with self.registry.lock:
            was_closed = connection.closed
            self._leave(connection)
            connection.mark_closed()
        if not was_closed:
            logger.info(f"User {connection.username} (connection {connection.id}) closed")

    def _leave(self, connection: Connection):
        room_id = connection.room_id
        if room_id is None:
            return
        room = self.registry.get(room_id)
        if room is not None:
            room.discard(connection)
            logger.debug(f"Removed connection {connection.id} from room {room_id} ({len(room)} left)")
            self.registry.remove_if_empty(room_id)
        connection.room_id = None

    def _on_join(self, connection: Connection, message: JoinMessage) -> List[Delivery]:
        room_id = message.room_id
        if not room_id:
            logger.warning(f"Rejected join without roomId from connection {connection.id}")
            return []

        if connection.room_id is not None and connection.room_id != room_id:
            logger.info(f"Connection {connection.id} switching from room {connection.room_id} to {room_id}")
            self._leave(connection)

        room = self.registry.get_or_create(room_id)
        room.add(connection)
        connection.joined(room_id, message.username)
        logger.info(f"User {message.username} joined room {room_id}")

        if room.cached_offer is None:
            return []
        logger.info(f"Sending cached offer for room {room_id} to connection {connection.id}")
        return [Delivery(connection, room.cached_offer.outbound(room_id))]

    def _on_offer(self, connection: Connection, message: OfferMessage) -> List[Delivery]:
        room = self._resolve(connection, message)
        if room is None:
            return []
        room.cached_offer = message
        logger.info(f"Offer stored for room {room.room_id}")
        return self._fan_out(room, connection, message)

    def _on_broadcast(self, connection: Connection, message: Message) -> List[Delivery]:
        room = self._resolve(connection, message)
        if room is None:
            return []
        return self._fan_out(room, connection, message)

    def _resolve(self, connection: Connection, message: Message):
        room = self.registry.get(message.room_id)
        if room is None:
            logger.debug(f"Dropping {message.type} from connection {connection.id}: no room {message.room_id!r}")
        return room

    @staticmethod
    def _fan_out(room: Room, sender: Connection, message: Message) -> List[Delivery]:
        payload = message.outbound(room.room_id)
        return [Delivery(member, payload) for member in room.others(sender)]
