"""In-memory registry of relay connections and their room assignment.

The registry owns one PeerRecord per open websocket plus an index from room
name to member ids. Rooms are never materialized as objects: a room exists
while at least one record points at it.

All state is process-scoped and lost on restart.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class PeerRecord:
    """A connection known to the relay.

    Attributes:
        id: Relay-assigned identifier, unique for the process lifetime.
        transport: The websocket connection used to reach this peer.
        room: Room joined by this peer, or None before its first join.
    """

    id: str
    transport: Any
    room: Optional[str] = None


class ConnectionRegistry:
    """Tracks active relay connections and the rooms they belong to.

    A record's room follows a last-write-wins policy: joining again moves the
    record to the new room. Every mutation and every membership snapshot runs
    under a single lock so a broadcast never observes a half-updated room.
    """

    def __init__(self):
        self._records: Dict[str, PeerRecord] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def register(self, transport: Any) -> str:
        """Add a new connection and return its generated id."""
        peer_id = str(uuid.uuid4())
        with self._lock:
            self._records[peer_id] = PeerRecord(id=peer_id, transport=transport)
            total = len(self._records)
        logger.info(f"Registered connection {peer_id} (total: {total})")
        return peer_id

    def set_room(self, peer_id: str, room: str) -> None:
        """Place a connection in a room, leaving its previous room if any.

        Raises:
            KeyError: If the connection is not registered.
        """
        with self._lock:
            record = self._records[peer_id]
            previous = record.room
            if previous == room:
                return
            if previous is not None:
                self._discard_member(previous, peer_id)
            record.room = room
            self._rooms.setdefault(room, set()).add(peer_id)

        if previous is None:
            logger.info(f"Connection {peer_id} joined room: {room}")
        else:
            logger.info(f"Connection {peer_id} moved from room {previous} to {room}")

    def unregister(self, peer_id: str) -> Optional[PeerRecord]:
        """Remove a connection. Unknown ids are ignored.

        Returns:
            The removed record, or None if it was not registered.
        """
        with self._lock:
            record = self._records.pop(peer_id, None)
            if record is None:
                return None
            if record.room is not None:
                self._discard_member(record.room, peer_id)
            remaining = len(self._records)
        logger.info(f"Removed connection {peer_id} (remaining: {remaining})")
        return record

    def members_of(self, room: str, exclude: Optional[str] = None) -> List[PeerRecord]:
        """Snapshot the records in a room.

        Args:
            room: Room name.
            exclude: Id to leave out, normally the sender's.

        Returns:
            List of records; safe to iterate while the registry changes.
        """
        with self._lock:
            member_ids = self._rooms.get(room, ())
            return [
                self._records[member_id]
                for member_id in member_ids
                if member_id != exclude
            ]

    def get(self, peer_id: str) -> Optional[PeerRecord]:
        with self._lock:
            return self._records.get(peer_id)

    def rooms(self) -> Dict[str, int]:
        """Return room names mapped to their member counts."""
        with self._lock:
            return {room: len(members) for room, members in self._rooms.items()}

    def _discard_member(self, room: str, peer_id: str) -> None:
        # Caller holds the lock.
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(peer_id)
        if not members:
            del self._rooms[room]
            logger.debug(f"Room {room} is now empty")

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, peer_id: str) -> bool:
        with self._lock:
            return peer_id in self._records
