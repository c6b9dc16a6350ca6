"""Shared fixtures: a recording transport and in-memory collaborators."""

from __future__ import annotations

import asyncio
import itertools
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite://")

from workhub.realtime import Identity, RealtimeHub  # noqa: E402


class FakeServer:
    """Records every emit. Emits addressed to a sid in ``failing`` raise."""

    def __init__(self) -> None:
        self.emitted: List[Tuple[str, Any, Optional[str]]] = []
        self.disconnected: List[str] = []
        self.failing: Set[str] = set()

    async def emit(self, event, data=None, to=None):
        if to in self.failing:
            raise ConnectionResetError(f"socket {to} is gone")
        self.emitted.append((event, data, to))

    async def disconnect(self, sid):
        self.disconnected.append(sid)

    def sent(self, event: str, to: Optional[str] = None) -> List[Any]:
        return [data for name, data, target in self.emitted if name == event and target == to]

    def broadcasts(self, event: str) -> List[Any]:
        return self.sent(event, to=None)

    def clear(self) -> None:
        self.emitted.clear()


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeVerifier:
    def __init__(self) -> None:
        self.tokens: Dict[str, Dict[str, Any]] = {}

    def verify(self, token):
        return self.tokens.get(token)


class FakeUserStore:
    def __init__(self) -> None:
        self.users: Dict[str, Identity] = {}
        self.error: Optional[Exception] = None

    async def find_active_by_id(self, user_id):
        if self.error:
            raise self.error
        return self.users.get(user_id)


class FakeMembershipStore:
    def __init__(self) -> None:
        self.members: Set[Tuple[str, str]] = set()
        self.last_read: Dict[Tuple[str, str], datetime] = {}
        self.receipts: Dict[Tuple[str, str], datetime] = {}
        self.error: Optional[Exception] = None

    def add(self, channel_id: str, *user_ids: str) -> None:
        for user_id in user_ids:
            self.members.add((channel_id, user_id))

    def remove(self, channel_id: str, user_id: str) -> None:
        self.members.discard((channel_id, user_id))

    async def is_member(self, channel_id, user_id):
        if self.error:
            raise self.error
        return (channel_id, user_id) in self.members

    async def update_last_read(self, channel_id, user_id, timestamp):
        self.last_read[(channel_id, user_id)] = timestamp

    async def upsert_read_receipt(self, message_id, user_id, read_at):
        self.receipts[(message_id, user_id)] = read_at


class FakeMessageStore:
    """Keeps messages in a dict.

    ``delays`` maps content to a sleep in seconds before a create or update
    and ``delete_delay`` is slept before a soft delete.
    """

    def __init__(self) -> None:
        self.messages: Dict[str, Dict[str, Any]] = {}
        self.delays: Dict[str, float] = {}
        self.delete_delay = 0.0
        self.error: Optional[Exception] = None
        self._ids = itertools.count(1)

    async def create(self, channel_id, author_id, content, parent_id=None):
        await asyncio.sleep(self.delays.get(content, 0))
        if self.error:
            raise self.error
        now = datetime.now(timezone.utc).isoformat()
        message = {
            "id": f"m{next(self._ids)}",
            "content": content,
            "channelId": channel_id,
            "senderId": author_id,
            "parentId": parent_id,
            "isEdited": False,
            "isDeleted": False,
            "createdAt": now,
            "updatedAt": now,
            "sender": {"id": author_id, "firstName": "", "lastName": "", "avatar": None},
        }
        self.messages[message["id"]] = message
        return dict(message)

    async def get(self, message_id):
        message = self.messages.get(message_id)
        return dict(message) if message else None

    def _live(self, message_id):
        message = self.messages.get(message_id)
        if message is None or message["isDeleted"]:
            raise LookupError(f"Message {message_id} not found")
        return message

    async def update(self, message_id, content):
        await asyncio.sleep(self.delays.get(content, 0))
        message = self._live(message_id)
        message.update(content=content, isEdited=True)
        return dict(message)

    async def soft_delete(self, message_id):
        await asyncio.sleep(self.delete_delay)
        self._live(message_id)["isDeleted"] = True


class FakeNotificationStore:
    def __init__(self) -> None:
        self.created: List[Dict[str, Any]] = []
        self.read: List[Tuple[str, str]] = []

    async def create(self, user_id, type, title, message, data=None):
        notification = {
            "id": f"n{len(self.created) + 1}",
            "userId": user_id,
            "type": type,
            "title": title,
            "message": message,
            "data": data,
            "isRead": False,
        }
        self.created.append(notification)
        return notification

    async def mark_read(self, notification_id, user_id):
        self.read.append((notification_id, user_id))
        return True


def make_identity(user_id: str, role: str = "MEMBER", department_id: Optional[str] = None) -> Identity:
    return Identity(id=user_id, role=role, department_id=department_id, email=f"{user_id}@workhub.test")


class Harness:
    """A hub wired to fakes, with helpers to register users and open sockets."""

    def __init__(self) -> None:
        self.server = FakeServer()
        self.clock = FakeClock()
        self.verifier = FakeVerifier()
        self.users = FakeUserStore()
        self.membership = FakeMembershipStore()
        self.messages = FakeMessageStore()
        self.notifications = FakeNotificationStore()
        self.hub = RealtimeHub(
            self.server,
            verifier=self.verifier,
            user_store=self.users,
            membership_store=self.membership,
            message_store=self.messages,
            notification_store=self.notifications,
            clock=self.clock,
        )

    def add_user(self, user_id: str, role: str = "MEMBER", department_id: Optional[str] = None) -> Identity:
        identity = make_identity(user_id, role, department_id)
        self.users.users[user_id] = identity
        self.verifier.tokens[f"token-{user_id}"] = {"sub": user_id}
        return identity

    async def connect(self, user_id: str, sid: str) -> Identity:
        return await self.hub.connect(sid, f"token-{user_id}")

    async def join(self, sid: str, channel_id: str) -> None:
        await self.hub.handle("channel:join", sid, {"channelId": channel_id})


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.fixture
def db():
    """A fresh schema on the in-memory test database and a session on it."""
    from workhub.db import Base, SessionLocal, engine

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
