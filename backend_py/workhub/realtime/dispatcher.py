"""Message create/edit/delete dispatch and channel room fan-out.

Each channel has a FIFO turn: a send takes its place in the queue before
its first suspension point and keeps it through persistence and
broadcast, so every connection in the room sees messages of one channel
in the order they reached the process. Different channels never wait on
each other.

Delivery is best-effort and per connection: a socket that fails to take
a frame is logged and skipped, the rest of the room still receives it.
A connection that joins after a broadcast does not get it retroactively.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..roles import can_moderate_messages
from .errors import AuthorizationFailure, CollaboratorFailure
from .events import (
    MESSAGE_DELETED,
    MESSAGE_NEW,
    MESSAGE_READ,
    MESSAGE_UPDATED,
    TYPING_UPDATE,
    MessageEdit,
    MessageRead,
    MessageRef,
    MessageSend,
    parse_payload,
)
from .gate import ChannelMembershipGate
from .registry import ConnectionRegistry, Identity
from .typing_store import TypingIndicatorStore

logger = logging.getLogger(__name__)


class _ChannelTurn:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class MessageDispatcher:

    def __init__(
        self,
        registry: ConnectionRegistry,
        server,
        gate: ChannelMembershipGate,
        typing: TypingIndicatorStore,
        message_store,
        membership_store,
    ) -> None:
        self.registry = registry
        self.server = server
        self.gate = gate
        self.typing = typing
        self.message_store = message_store
        self.membership_store = membership_store
        self._turns: Dict[str, _ChannelTurn] = {}

    @asynccontextmanager
    async def channel_turn(self, channel_id: str):
        turn = self._turns.get(channel_id)
        if turn is None:
            turn = self._turns[channel_id] = _ChannelTurn()
        turn.users += 1
        try:
            async with turn.lock:
                yield
        finally:
            turn.users -= 1
            if turn.users == 0:
                del self._turns[channel_id]

    async def _call_store(self, description: str, coro):
        try:
            return await coro
        except Exception as exc:
            logger.exception("Store call failed: %s", description)
            raise CollaboratorFailure(f"Failed to {description}") from exc

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def emit_to(self, sid: str, event: str, payload: Dict[str, Any]) -> bool:
        try:
            await self.server.emit(event, payload, to=sid)
            return True
        except Exception as e:
            logger.warning("Failed to deliver %s to %s: %s", event, sid, e)
            return False

    async def fan_out(
        self,
        channel_id: str,
        event: str,
        payload: Dict[str, Any],
        exclude: Iterable[str] = (),
    ) -> int:
        """Send ``payload`` once to every connection in the channel room.

        Returns the number of connections that accepted it.
        """
        skipped = set(exclude)
        targets = [sid for sid in self.registry.room_members(channel_id) if sid not in skipped]
        if not targets:
            return 0
        results = await asyncio.gather(
            *[self.emit_to(sid, event, payload) for sid in targets],
            return_exceptions=True,
        )
        return sum(1 for ok in results if ok is True)

    async def broadcast_typing(self, channel_id: str, actor: Optional[Identity] = None) -> None:
        """Send each room connection the typers of ``channel_id`` other than itself.

        The actor's own connections are skipped.
        """
        by_identity: Dict[str, List[str]] = {}
        for sid in self.registry.room_members(channel_id):
            conn = self.registry.get(sid)
            if conn is None or (actor is not None and conn.identity.id == actor.id):
                continue
            by_identity.setdefault(conn.identity.id, []).append(sid)
        if not by_identity:
            return

        sends = []
        for identity_id, sids in by_identity.items():
            payload = {
                "channelId": channel_id,
                "users": self.typing.get_active_typers(channel_id, excluding=identity_id),
            }
            sends.extend(self.emit_to(sid, TYPING_UPDATE, payload) for sid in sids)
        await asyncio.gather(*sends, return_exceptions=True)

    # ------------------------------------------------------------------
    # Message events
    # ------------------------------------------------------------------

    async def send(self, identity: Identity, data: Any) -> Dict[str, Any]:
        payload = parse_payload(MessageSend, data)
        channel_id = payload.channelId

        async with self.channel_turn(channel_id):
            await self.gate.require_publish(identity, channel_id)
            message = await self._call_store(
                "send message",
                self.message_store.create(channel_id, identity.id, payload.content, payload.parentId),
            )
            await self._call_store(
                "update last read",
                self.membership_store.update_last_read(channel_id, identity.id, datetime.now(timezone.utc)),
            )
            self.typing.on_message_sent(channel_id, identity.id)

            await self.fan_out(channel_id, MESSAGE_NEW, {**message, "tempId": payload.tempId})
            logger.debug("Message %s sent in channel %s by %s", message["id"], channel_id, identity.id)

        await self.broadcast_typing(channel_id, identity)
        return message

    async def _load_owned(self, identity: Identity, message_id: str, verb: str) -> Dict[str, Any]:
        message = await self._call_store("load message", self.message_store.get(message_id))
        if not message or message.get("isDeleted"):
            raise AuthorizationFailure(f"Cannot {verb} this message")
        if message["senderId"] != identity.id and not can_moderate_messages(identity.role):
            logger.warning("User %s may not %s message %s", identity.id, verb, message_id)
            raise AuthorizationFailure(f"Cannot {verb} this message")
        return message

    async def edit(self, identity: Identity, data: Any) -> Dict[str, Any]:
        payload = parse_payload(MessageEdit, data)
        original = await self._load_owned(identity, payload.messageId, "edit")
        channel_id = original["channelId"]

        async with self.channel_turn(channel_id):
            # An earlier holder of the turn may have deleted it.
            await self._load_owned(identity, payload.messageId, "edit")
            await self.gate.require_publish(identity, channel_id)
            updated = await self._call_store(
                "edit message", self.message_store.update(payload.messageId, payload.content)
            )
            await self.fan_out(channel_id, MESSAGE_UPDATED, updated)
        return updated

    async def delete(self, identity: Identity, data: Any) -> Dict[str, Any]:
        payload = parse_payload(MessageRef, data)
        original = await self._load_owned(identity, payload.messageId, "delete")
        channel_id = original["channelId"]

        async with self.channel_turn(channel_id):
            await self._load_owned(identity, payload.messageId, "delete")
            await self.gate.require_publish(identity, channel_id)
            await self._call_store("delete message", self.message_store.soft_delete(payload.messageId))
            event = {"messageId": payload.messageId, "channelId": channel_id}
            await self.fan_out(channel_id, MESSAGE_DELETED, event)
        return event

    async def mark_read(self, identity: Identity, data: Any) -> Optional[Dict[str, Any]]:
        payload = parse_payload(MessageRead, data)
        await self.gate.require_publish(identity, payload.channelId)
        message = await self._call_store("load message", self.message_store.get(payload.messageId))
        if not message or message["channelId"] != payload.channelId:
            raise AuthorizationFailure("Message does not belong to this channel")

        read_at = datetime.now(timezone.utc)
        await self._call_store(
            "mark message as read",
            self.membership_store.upsert_read_receipt(payload.messageId, identity.id, read_at),
        )
        await self._call_store(
            "update last read",
            self.membership_store.update_last_read(payload.channelId, identity.id, read_at),
        )
        receipt = {"messageId": payload.messageId, "userId": identity.id, "readAt": read_at.isoformat()}
        await self.fan_out(
            payload.channelId,
            MESSAGE_READ,
            receipt,
            exclude=self.registry.connections_for(identity.id),
        )
        return receipt
