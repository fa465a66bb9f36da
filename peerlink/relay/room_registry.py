"""
Room registry for the relay.
Maps room ids to member connections, assigns peer ids and enforces capacity.
"""
import asyncio
import uuid
from typing import Any, Dict, List, Set

from peerlink.core.exceptions import InvalidRoomError, RoomFullError
from peerlink.core.logging import LoggerMixin
from peerlink.core.messages import SignalingMessageFactory
from peerlink.core.validation_utils import ValidationUtils
from peerlink.relay.connection import Connection


class RoomRegistry(LoggerMixin):
    """In-memory rooms; a room exists exactly while it has members."""

    def __init__(self, capacity: int = 8, room_id_max_length: int = 64):
        super().__init__()
        self.capacity = capacity
        self.room_id_max_length = room_id_max_length
        self.rooms: Dict[str, Set[Connection]] = {}
        self._lock = asyncio.Lock()

    def sanitize(self, room_id: Any) -> str:
        return ValidationUtils.sanitize_room_id(room_id, self.room_id_max_length)

    async def join(self, connection: Connection, room_id: Any) -> str:
        """Admit a connection to a room and return its peer id.

        Callers announce the newcomer with ``notify_peer_joined`` once they
        have answered the joining connection.

        Raises:
            InvalidRoomError: the id sanitizes to an empty string.
            RoomFullError: the room already holds ``capacity`` members.
        """
        clean_id = self.sanitize(room_id)
        if not clean_id:
            raise InvalidRoomError("Room id is empty after sanitizing", {"room_id": str(room_id)[:80]})

        async with self._lock:
            members = self.rooms.get(clean_id, set())
            if connection not in members and len(members) >= self.capacity:
                raise RoomFullError("Room is full", {"room_id": clean_id, "capacity": self.capacity})

            # A second JOIN_ROOM moves the connection; its peer id is kept
            if connection.room_id is not None and connection.room_id != clean_id:
                self._remove(connection)

            if connection.peer_id is None:
                connection.peer_id = uuid.uuid4().hex

            self.rooms.setdefault(clean_id, set()).add(connection)
            connection.room_id = clean_id

        self.log_info(f"🚪 [Rooms] Peer joined room", {
            "room_id": clean_id,
            "peer_id": connection.peer_id,
            "members": len(self.rooms.get(clean_id, ()))
        })
        return connection.peer_id

    async def notify_peer_joined(self, connection: Connection) -> int:
        """Send PEER_JOINED for ``connection`` to every other room member."""
        message = SignalingMessageFactory.peer_joined(connection.peer_id)
        return await self._fan_out(connection, message)

    async def relay(self, connection: Connection, message: Dict[str, Any]) -> bool:
        """Forward a message to the sender's room mates, stamped with its peer id.

        Returns False (message dropped) when the sender is not in a room.
        """
        if connection.room_id is None or connection.room_id not in self.rooms:
            self.log_debug(f"🔇 [Rooms] Dropping relay from peer outside any room", {
                "type": message.get('type')
            })
            return False

        outbound = SignalingMessageFactory.stamped(message, connection.peer_id)
        await self._fan_out(connection, outbound)
        return True

    async def leave(self, connection: Connection):
        """Remove a connection from its room. Safe to call repeatedly."""
        async with self._lock:
            room_id = connection.room_id
            if room_id is None:
                return
            self._remove(connection)

        self.log_info(f"🚪 [Rooms] Peer left room", {
            "room_id": room_id,
            "peer_id": connection.peer_id,
            "room_deleted": room_id not in self.rooms
        })

    def _remove(self, connection: Connection):
        room_id = connection.room_id
        members = self.rooms.get(room_id)
        if members is not None:
            members.discard(connection)
            if not members:
                del self.rooms[room_id]
        connection.room_id = None

    async def _fan_out(self, sender: Connection, message: Dict[str, Any]) -> int:
        async with self._lock:
            recipients = [peer for peer in self.rooms.get(sender.room_id, ())
                          if peer is not sender and peer.writable]
        if not recipients:
            return 0
        results = await asyncio.gather(*(peer.send(message) for peer in recipients))
        return sum(1 for sent in results if sent)

    def members(self, room_id: str) -> List[Connection]:
        return list(self.rooms.get(room_id, ()))

    def get_room_count(self) -> int:
        return len(self.rooms)

    def get_connection_count(self) -> int:
        return sum(len(members) for members in self.rooms.values())

    def get_status(self) -> Dict[str, Any]:
        """Get registry status."""
        return {
            'rooms': self.get_room_count(),
            'members': self.get_connection_count(),
            'capacity': self.capacity
        }
