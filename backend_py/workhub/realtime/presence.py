"""Online/offline presence derived from the connection registry."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from .events import PRESENCE_UPDATE
from .registry import Connection, ConnectionRegistry, Identity

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Announces 0 -> 1 and 1 -> 0 connection-count transitions.

    A second device connecting, or one of several devices dropping, is
    invisible to other clients. Announcements go to every connected
    client.
    """

    def __init__(self, registry: ConnectionRegistry, server) -> None:
        self.registry = registry
        self.server = server

    async def connected(self, identity: Identity, sid: str) -> bool:
        first = self.registry.register(identity, sid)
        if first:
            logger.debug("User %s is now online", identity.id)
            try:
                await self.server.emit(PRESENCE_UPDATE, {"identityId": identity.id, "online": True})
            except Exception:
                # The socket is refused, so it must not stay counted as online.
                self.registry.deregister(sid)
                raise
        return first

    async def disconnected(self, sid: str) -> Optional[Connection]:
        conn, offline = self.registry.deregister(sid)
        if conn is not None and offline:
            logger.debug("User %s is now offline", conn.identity.id)
            await self.server.emit(PRESENCE_UPDATE, {"identityId": conn.identity.id, "online": False})
        return conn

    def request_bulk_status(self, identity_ids: Iterable[str]) -> Dict[str, bool]:
        return {identity_id: self.registry.is_online(identity_id) for identity_id in identity_ids}
