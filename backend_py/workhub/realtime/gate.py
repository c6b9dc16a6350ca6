"""Channel membership authorization.

Every decision asks the membership store again; nothing is cached past
the call that needed it, so a member removed over HTTP cannot rejoin a
room on the strength of an earlier answer.
"""

from __future__ import annotations

import logging

from .errors import AuthorizationFailure, CollaboratorFailure
from .registry import Identity

logger = logging.getLogger(__name__)


class ChannelMembershipGate:

    def __init__(self, membership_store) -> None:
        self.membership_store = membership_store

    async def _is_member(self, identity: Identity, channel_id: str) -> bool:
        try:
            return bool(await self.membership_store.is_member(channel_id, identity.id))
        except Exception as exc:
            logger.exception("Membership lookup failed for channel %s", channel_id)
            raise CollaboratorFailure("Failed to verify channel membership") from exc

    async def can_join(self, identity: Identity, channel_id: str) -> bool:
        return await self._is_member(identity, channel_id)

    async def can_publish(self, identity: Identity, channel_id: str) -> bool:
        # Publishing needs exactly the rights joining does.
        return await self._is_member(identity, channel_id)

    async def require_publish(self, identity: Identity, channel_id: str) -> None:
        if not await self.can_publish(identity, channel_id):
            logger.warning("User %s denied publish to channel %s", identity.id, channel_id)
            raise AuthorizationFailure("Not a member of this channel")
