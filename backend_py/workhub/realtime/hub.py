"""Real-time hub.

``RealtimeHub`` is constructed once per process and owns every piece of
in-memory real-time state: the connection registry, presence tracking,
the typing indicator store and the message dispatcher. Socket handlers
and HTTP routes receive it by injection instead of reaching for module
globals, which also lets tests drive it with a fake transport.

The transport only has to provide two coroutines::

    emit(event, data, to=None)   # to=None means every connected client
    disconnect(sid)

``socketio.AsyncServer`` satisfies both.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from .bootstrap import SessionBootstrap
from .dispatcher import MessageDispatcher
from .errors import (
    AuthorizationFailure,
    CollaboratorFailure,
    InvariantViolation,
    RealtimeError,
)
from .events import (
    CHANNEL_JOIN,
    CHANNEL_JOINED,
    CHANNEL_LEAVE,
    CHANNEL_LEFT,
    ERROR,
    MESSAGE_DELETE,
    MESSAGE_EDIT,
    MESSAGE_READ,
    MESSAGE_SEND,
    NOTIFICATION_NEW,
    NOTIFICATION_READ,
    PRESENCE_REQUEST,
    PRESENCE_SNAPSHOT,
    TYPING_START,
    TYPING_STOP,
    ChannelRef,
    NotificationRef,
    PresenceRequest,
    parse_payload,
)
from .gate import ChannelMembershipGate
from .presence import PresenceTracker
from .registry import Connection, ConnectionRegistry, Identity
from .typing_store import DEFAULT_TIMEOUT_MS, TypingIndicatorStore, monotonic_ms

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Any], Awaitable[None]]


class RealtimeHub:

    def __init__(
        self,
        server,
        verifier,
        user_store,
        membership_store,
        message_store,
        notification_store=None,
        typing_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.server = server
        self.notification_store = notification_store
        self.registry = ConnectionRegistry()
        self.presence = PresenceTracker(self.registry, server)
        self.typing = TypingIndicatorStore(timeout_ms=typing_timeout_ms, clock=clock)
        self.gate = ChannelMembershipGate(membership_store)
        self.bootstrap = SessionBootstrap(verifier, user_store)
        self.dispatcher = MessageDispatcher(
            self.registry, server, self.gate, self.typing, message_store, membership_store
        )
        self._sweeper: Optional[asyncio.Task] = None

        self.handlers: Dict[str, Handler] = {
            CHANNEL_JOIN: self.on_channel_join,
            CHANNEL_LEAVE: self.on_channel_leave,
            MESSAGE_SEND: self.on_message_send,
            MESSAGE_EDIT: self.on_message_edit,
            MESSAGE_DELETE: self.on_message_delete,
            MESSAGE_READ: self.on_message_read,
            TYPING_START: self.on_typing_start,
            TYPING_STOP: self.on_typing_stop,
            PRESENCE_REQUEST: self.on_presence_request,
            NOTIFICATION_READ: self.on_notification_read,
        }

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, sid: str, token: Optional[str]) -> Identity:
        """Authenticate and register a new connection.

        Raises ``AuthenticationFailure`` when the connection must be refused.
        """
        identity = await self.bootstrap.authenticate(token)
        await self.presence.connected(identity, sid)
        logger.info("User connected: %s (%s)", identity.email or identity.id, sid)
        return identity

    async def disconnect(self, sid: str) -> None:
        conn = await self.presence.disconnected(sid)
        if conn is None:
            return
        logger.info("User disconnected: %s (%s)", conn.identity.email or conn.identity.id, sid)
        if not self.registry.is_online(conn.identity.id):
            for channel_id in self.typing.clear_identity(conn.identity.id):
                await self.dispatcher.broadcast_typing(channel_id, conn.identity)

    async def handle(self, event: str, sid: str, data: Any = None) -> None:
        """Run the handler registered for ``event`` on behalf of ``sid``.

        Failures are reported to ``sid`` alone with an ``error`` event. An
        inconsistent registry closes the connection.
        """
        handler = self.handlers.get(event)
        if handler is None:
            await self._send_error(sid, f"Unknown event: {event}")
            return
        conn = self.registry.get(sid)
        try:
            if conn is None:
                raise InvariantViolation("Connection is not registered")
            await handler(conn, data)
        except InvariantViolation as exc:
            logger.error("Closing %s after invariant violation: %s", sid, exc.message)
            await self._send_error(sid, exc.message)
            await self.server.disconnect(sid)
        except RealtimeError as exc:
            await self._send_error(sid, exc.message)

    async def _send_error(self, sid: str, message: str) -> None:
        try:
            await self.server.emit(ERROR, {"message": message}, to=sid)
        except Exception as e:
            logger.warning("Failed to deliver error to %s: %s", sid, e)

    # ------------------------------------------------------------------
    # Channel rooms
    # ------------------------------------------------------------------

    async def on_channel_join(self, conn: Connection, data: Any) -> None:
        channel_id = parse_payload(ChannelRef, data).channelId
        if not await self.gate.can_join(conn.identity, channel_id):
            logger.warning("User %s denied join to channel %s", conn.identity.id, channel_id)
            # A connection that joined before losing membership stops receiving the room.
            self.registry.leave_room(conn.sid, channel_id)
            raise AuthorizationFailure("Not a member of this channel")
        # The membership answer is used immediately; nothing awaits between
        # the check returning and the room entry below.
        if not self.registry.join_room(conn.sid, channel_id):
            logger.debug("Connection %s closed before joining %s", conn.sid, channel_id)
            return
        logger.debug("User %s joined channel %s", conn.identity.id, channel_id)
        await self.server.emit(CHANNEL_JOINED, {"channelId": channel_id}, to=conn.sid)

    async def on_channel_leave(self, conn: Connection, data: Any) -> None:
        channel_id = parse_payload(ChannelRef, data).channelId
        self.registry.leave_room(conn.sid, channel_id)
        logger.debug("User %s left channel %s", conn.identity.id, channel_id)
        await self.server.emit(CHANNEL_LEFT, {"channelId": channel_id}, to=conn.sid)

    async def evict_from_channel(self, identity_id: str, channel_id: str) -> int:
        """Take every connection of ``identity_id`` out of the channel room.

        Used when a member is removed from the channel. Returns the number
        of connections that were in the room.
        """
        evicted = 0
        for sid in self.registry.connections_for(identity_id):
            if self.registry.leave_room(sid, channel_id):
                evicted += 1
                await self.dispatcher.emit_to(sid, CHANNEL_LEFT, {"channelId": channel_id})
        if identity_id in self.typing.get_active_typers(channel_id):
            self.typing.stop_typing(channel_id, identity_id)
            await self.dispatcher.broadcast_typing(channel_id)
        logger.info("Evicted %s connection(s) of %s from channel %s", evicted, identity_id, channel_id)
        return evicted

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def on_message_send(self, conn: Connection, data: Any) -> None:
        await self.dispatcher.send(conn.identity, data)

    async def on_message_edit(self, conn: Connection, data: Any) -> None:
        await self.dispatcher.edit(conn.identity, data)

    async def on_message_delete(self, conn: Connection, data: Any) -> None:
        await self.dispatcher.delete(conn.identity, data)

    async def on_message_read(self, conn: Connection, data: Any) -> None:
        await self.dispatcher.mark_read(conn.identity, data)

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------

    def _require_room(self, conn: Connection, channel_id: str) -> None:
        if channel_id not in conn.rooms:
            raise AuthorizationFailure("Not a member of this channel")

    async def on_typing_start(self, conn: Connection, data: Any) -> None:
        channel_id = parse_payload(ChannelRef, data).channelId
        self._require_room(conn, channel_id)
        self.typing.start_typing(channel_id, conn.identity.id)
        await self.dispatcher.broadcast_typing(channel_id, conn.identity)

    async def on_typing_stop(self, conn: Connection, data: Any) -> None:
        channel_id = parse_payload(ChannelRef, data).channelId
        self._require_room(conn, channel_id)
        self.typing.stop_typing(channel_id, conn.identity.id)
        await self.dispatcher.broadcast_typing(channel_id, conn.identity)

    async def sweep_typing(self) -> None:
        """Expire stale typing entries and tell rooms whose list shrank."""
        for channel_id in self.typing.sweep():
            await self.dispatcher.broadcast_typing(channel_id)

    async def _sweep_forever(self) -> None:
        interval = self.typing.timeout_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_typing()
            except Exception:
                logger.exception("Typing sweep failed")

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    # ------------------------------------------------------------------
    # Presence and notifications
    # ------------------------------------------------------------------

    async def on_presence_request(self, conn: Connection, data: Any) -> None:
        ids = parse_payload(PresenceRequest, data).identityIds
        snapshot = self.presence.request_bulk_status(ids)
        await self.server.emit(PRESENCE_SNAPSHOT, {"map": snapshot}, to=conn.sid)

    async def on_notification_read(self, conn: Connection, data: Any) -> None:
        notification_id = parse_payload(NotificationRef, data).notificationId
        if self.notification_store is None:
            return
        try:
            await self.notification_store.mark_read(notification_id, conn.identity.id)
        except Exception as exc:
            logger.exception("Error marking notification %s as read", notification_id)
            raise CollaboratorFailure("Failed to mark notification as read") from exc

    async def _emit_each(self, sids: Iterable[str], event: str, payload: Any) -> int:
        delivered = 0
        for sid in sids:
            if await self.dispatcher.emit_to(sid, event, payload):
                delivered += 1
        return delivered

    async def publish_to_identity(self, identity_id: str, event: str, payload: Any) -> int:
        """Deliver an event to every live connection of one user."""
        return await self._emit_each(self.registry.connections_for(identity_id), event, payload)

    async def send_notification(self, identity_id: str, notification: Any) -> int:
        return await self.publish_to_identity(identity_id, NOTIFICATION_NEW, notification)

    async def send_department_notification(self, department_id: str, notification: Any) -> int:
        return await self._emit_each(
            self.registry.department_sids(department_id), NOTIFICATION_NEW, notification
        )

    async def broadcast(self, event: str, payload: Any) -> None:
        await self.server.emit(event, payload)

    def is_user_online(self, identity_id: str) -> bool:
        return self.registry.is_online(identity_id)

    def get_online_users_count(self) -> int:
        return self.registry.count_online()

    def online_user_ids(self) -> List[str]:
        return self.registry.online_ids()
