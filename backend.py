import asyncio
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from logging_config import get_logger

if TYPE_CHECKING:
    from connection import Connection
    from schemas.messages import OfferMessage

logger = get_logger(__name__)


class Room:
    """Members currently joined to one room plus the last offer seen for it."""

    def __init__(self, room_id: str):
        self.room_id = room_id
        self.members: Set["Connection"] = set()
        self.cached_offer: Optional["OfferMessage"] = None

    def __repr__(self) -> str:
        return f"<Room {self.room_id} members={len(self.members)} offer={self.cached_offer is not None}>"

    def __len__(self) -> int:
        return len(self.members)

    def add(self, connection: "Connection"):
        self.members.add(connection)

    def discard(self, connection: "Connection"):
        self.members.discard(connection)

    def others(self, connection: "Connection") -> List["Connection"]:
        """Every current member except ``connection``."""
        return [member for member in self.members if member is not connection]


class RoomRegistry:
    """In-memory room table. Rooms live only while they have members.

    None of these methods await, so on the event loop each call is atomic.
    Callers that combine several calls (join, leave, cache an offer) hold
    ``lock`` for the whole sequence.
    """

    def __init__(self):
        self.rooms: Dict[str, Room] = {}
        self.lock = asyncio.Lock()
        logger.info("Initializing in-memory RoomRegistry")

    def __contains__(self, room_id: str) -> bool:
        return room_id in self.rooms

    def __len__(self) -> int:
        return len(self.rooms)

    def room_ids(self) -> List[str]:
        return list(self.rooms)

    def get(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(room_id)

    def get_or_create(self, room_id: str) -> Room:
        room = self.rooms.get(room_id)
        if room is None:
            room = Room(room_id)
            self.rooms[room_id] = room
            logger.info(f"Room {room_id} created")
        return room

    def remove_if_empty(self, room_id: str) -> bool:
        room = self.rooms.get(room_id)
        if room is None or room.members:
            return False
        del self.rooms[room_id]
        logger.info(f"Room {room_id} was deleted as it's empty")
        return True
