"""Database-backed collaborators of the real-time hub.

Each store opens a short-lived session per call from a session factory
(``SessionLocal`` by default) and returns plain dicts or ``Identity``
values, never ORM rows, so nothing lazy-loads after the session closes.
The public methods are coroutines because the hub treats every store
call as a suspension point. Each session block runs on the loop's default
executor, off the event loop thread.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session, joinedload

from ..auth_utils import verify_access_token
from ..db import SessionLocal
from ..models import Channel, ChannelMember, Message, Notification, ReadReceipt, User, UserStatus
from ..realtime.registry import Identity


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def identity_from_user(user: User) -> Identity:
    return Identity(
        id=user.id,
        role=user.role.value if hasattr(user.role, "value") else str(user.role),
        department_id=user.department_id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        avatar=user.avatar,
    )


def serialize_message(message: Message) -> Dict[str, Any]:
    sender = message.sender
    return {
        "id": message.id,
        "content": message.content,
        "channelId": message.channel_id,
        "senderId": message.sender_id,
        "parentId": message.parent_id,
        "isEdited": bool(message.is_edited),
        "isDeleted": bool(message.is_deleted),
        "createdAt": _iso(message.created_at),
        "updatedAt": _iso(message.updated_at),
        "sender": {
            "id": sender.id,
            "firstName": sender.first_name,
            "lastName": sender.last_name,
            "avatar": sender.avatar,
        } if sender else None,
    }


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "userId": notification.user_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "isRead": bool(notification.is_read),
        "readAt": _iso(notification.read_at),
        "createdAt": _iso(notification.created_at),
    }


class _SqlStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self.session_factory = session_factory

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, fn, *args)


class JWTCredentialVerifier:
    """Checks signature, issuer and expiry. Returns None for anything invalid."""

    def verify(self, token: str) -> Optional[Dict[str, Any]]:
        return verify_access_token(token)


class SqlUserStore(_SqlStore):

    def _find_active(self, user_id: str) -> Optional[Identity]:
        with self.session_factory() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if not user or user.status != UserStatus.ACTIVE:
                return None
            return identity_from_user(user)

    async def find_active_by_id(self, user_id: str) -> Optional[Identity]:
        return await self._run(self._find_active, user_id)


class SqlMembershipStore(_SqlStore):

    def _is_member(self, channel_id: str, user_id: str) -> bool:
        with self.session_factory() as db:
            return (
                db.query(ChannelMember.id)
                .filter(ChannelMember.channel_id == channel_id, ChannelMember.user_id == user_id)
                .first()
                is not None
            )

    def _update_last_read(self, channel_id: str, user_id: str, timestamp: datetime) -> None:
        with self.session_factory() as db:
            db.query(ChannelMember).filter(
                ChannelMember.channel_id == channel_id, ChannelMember.user_id == user_id
            ).update({ChannelMember.last_read: timestamp}, synchronize_session=False)
            db.commit()

    def _upsert_read_receipt(self, message_id: str, user_id: str, read_at: datetime) -> None:
        with self.session_factory() as db:
            receipt = (
                db.query(ReadReceipt)
                .filter(ReadReceipt.message_id == message_id, ReadReceipt.user_id == user_id)
                .first()
            )
            if receipt:
                receipt.read_at = read_at
            else:
                db.add(ReadReceipt(message_id=message_id, user_id=user_id, read_at=read_at))
            db.commit()

    async def is_member(self, channel_id: str, user_id: str) -> bool:
        return await self._run(self._is_member, channel_id, user_id)

    async def update_last_read(self, channel_id: str, user_id: str, timestamp: datetime) -> None:
        await self._run(self._update_last_read, channel_id, user_id, timestamp)

    async def upsert_read_receipt(self, message_id: str, user_id: str, read_at: datetime) -> None:
        await self._run(self._upsert_read_receipt, message_id, user_id, read_at)


class SqlMessageStore(_SqlStore):
    """Edits and deletes only touch live rows; a deleted message is a LookupError."""

    def _load(self, db: Session, message_id: str) -> Optional[Message]:
        return (
            db.query(Message)
            .options(joinedload(Message.sender))
            .filter(Message.id == message_id)
            .first()
        )

    def _create(
        self, channel_id: str, author_id: str, content: str, parent_id: Optional[str]
    ) -> Dict[str, Any]:
        with self.session_factory() as db:
            message = Message(
                channel_id=channel_id,
                sender_id=author_id,
                content=content,
                parent_id=parent_id,
            )
            db.add(message)
            db.query(Channel).filter(Channel.id == channel_id).update(
                {Channel.updated_at: datetime.now(timezone.utc)}, synchronize_session=False
            )
            db.commit()
            return serialize_message(self._load(db, message.id))

    def _get(self, message_id: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            message = self._load(db, message_id)
            return serialize_message(message) if message else None

    def _update(self, message_id: str, content: str) -> Dict[str, Any]:
        with self.session_factory() as db:
            updated = db.query(Message).filter(
                Message.id == message_id, Message.is_deleted.is_(False)
            ).update({Message.content: content, Message.is_edited: True}, synchronize_session=False)
            if not updated:
                raise LookupError(f"Message {message_id} not found")
            db.commit()
            return serialize_message(self._load(db, message_id))

    def _soft_delete(self, message_id: str) -> None:
        with self.session_factory() as db:
            updated = db.query(Message).filter(
                Message.id == message_id, Message.is_deleted.is_(False)
            ).update({Message.is_deleted: True}, synchronize_session=False)
            if not updated:
                raise LookupError(f"Message {message_id} not found")
            db.commit()

    async def create(
        self, channel_id: str, author_id: str, content: str, parent_id: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._run(self._create, channel_id, author_id, content, parent_id)

    async def get(self, message_id: str) -> Optional[Dict[str, Any]]:
        return await self._run(self._get, message_id)

    async def update(self, message_id: str, content: str) -> Dict[str, Any]:
        return await self._run(self._update, message_id, content)

    async def soft_delete(self, message_id: str) -> None:
        await self._run(self._soft_delete, message_id)


class SqlNotificationStore(_SqlStore):

    def _create(
        self, user_id: str, type: str, title: str, message: str, data: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        with self.session_factory() as db:
            notification = Notification(user_id=user_id, type=type, title=title, message=message, data=data)
            db.add(notification)
            db.commit()
            db.refresh(notification)
            return serialize_notification(notification)

    def _mark_read(self, notification_id: str, user_id: str) -> bool:
        with self.session_factory() as db:
            updated = db.query(Notification).filter(
                Notification.id == notification_id, Notification.user_id == user_id
            ).update(
                {Notification.is_read: True, Notification.read_at: datetime.now(timezone.utc)},
                synchronize_session=False,
            )
            db.commit()
            return bool(updated)

    async def create(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return await self._run(self._create, user_id, type, title, message, data)

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        return await self._run(self._mark_read, notification_id, user_id)
