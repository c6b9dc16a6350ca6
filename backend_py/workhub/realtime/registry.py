"""Live connection bookkeeping.

The registry is the only owner of connection state: which identity each
socket belongs to, which sockets an identity currently holds, and which
channel rooms each socket has joined. Presence is derived from it and is
never stored separately.

None of the methods await, so each one runs to completion on the event
loop without interleaving with another handler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .errors import InvariantViolation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The authenticated user behind a connection. Immutable once attached."""

    id: str
    role: str
    department_id: Optional[str] = None
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    avatar: Optional[str] = None


@dataclass
class Connection:
    sid: str
    identity: Identity
    rooms: Set[str] = field(default_factory=set)


class ConnectionRegistry:
    """Identity -> connections map plus channel room membership."""

    def __init__(self) -> None:
        # sid -> Connection
        self._connections: Dict[str, Connection] = {}
        # identity id -> sids, insertion ordered
        self._by_identity: Dict[str, Dict[str, None]] = {}
        # channel id -> sids in join order
        self._rooms: Dict[str, Dict[str, None]] = {}

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def register(self, identity: Identity, sid: str) -> bool:
        """Record ``sid`` for ``identity``.

        Returns True when this is the identity's first live connection.
        """
        if sid in self._connections:
            raise InvariantViolation(f"Connection {sid} is already registered")
        self._connections[sid] = Connection(sid=sid, identity=identity)
        sids = self._by_identity.get(identity.id)
        first = sids is None
        if first:
            sids = self._by_identity[identity.id] = {}
        sids[sid] = None
        return first

    def deregister(self, sid: str) -> Tuple[Optional[Connection], bool]:
        """Forget ``sid`` and drop it from every room it joined.

        Returns the removed connection (None if unknown) and whether its
        identity has no connection left.
        """
        conn = self._connections.pop(sid, None)
        if conn is None:
            return None, False

        for channel_id in conn.rooms:
            members = self._rooms.get(channel_id)
            if members is not None:
                members.pop(sid, None)
                if not members:
                    del self._rooms[channel_id]
        conn.rooms.clear()

        sids = self._by_identity.get(conn.identity.id)
        if sids is None or sid not in sids:
            raise InvariantViolation(f"Identity index lost connection {sid}")
        del sids[sid]
        if sids:
            return conn, False
        del self._by_identity[conn.identity.id]
        return conn, True

    def get(self, sid: str) -> Optional[Connection]:
        return self._connections.get(sid)

    def connections_for(self, identity_id: str) -> List[str]:
        return list(self._by_identity.get(identity_id, ()))

    def is_online(self, identity_id: str) -> bool:
        return identity_id in self._by_identity

    def count_online(self) -> int:
        return len(self._by_identity)

    def online_ids(self) -> List[str]:
        return list(self._by_identity)

    def all_sids(self) -> List[str]:
        return list(self._connections)

    def department_sids(self, department_id: str) -> List[str]:
        return [
            sid for sid, conn in self._connections.items()
            if department_id and conn.identity.department_id == department_id
        ]

    # ------------------------------------------------------------------
    # Channel rooms
    # ------------------------------------------------------------------

    def join_room(self, sid: str, channel_id: str) -> bool:
        """Add a live connection to a channel room. False if the sid is gone."""
        conn = self._connections.get(sid)
        if conn is None:
            return False
        conn.rooms.add(channel_id)
        self._rooms.setdefault(channel_id, {})[sid] = None
        return True

    def leave_room(self, sid: str, channel_id: str) -> bool:
        conn = self._connections.get(sid)
        if conn is None or channel_id not in conn.rooms:
            return False
        conn.rooms.discard(channel_id)
        members = self._rooms.get(channel_id)
        if members is None or sid not in members:
            raise InvariantViolation(f"Room {channel_id} lost connection {sid}")
        del members[sid]
        if not members:
            del self._rooms[channel_id]
        return True

    def room_members(self, channel_id: str) -> List[str]:
        return list(self._rooms.get(channel_id, ()))

    def in_room(self, sid: str, channel_id: str) -> bool:
        return sid in self._rooms.get(channel_id, ())
