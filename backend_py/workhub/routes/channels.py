"""Channel CRUD and membership management."""

from __future__ import annotations
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.orm import Session, selectinload

from ..db import get_db
from ..deps import get_current_user, get_hub, require_permission
from ..models import Channel, ChannelMember, ChannelRole, ChannelType, Message, User
from ..roles import can_moderate_messages

router = APIRouter(prefix="/channels", tags=["channels"])


class ChannelCreate(BaseModel):
    name: str
    description: Optional[str] = None
    type: ChannelType = ChannelType.GROUP
    isPrivate: bool = False
    departmentId: Optional[str] = None
    memberIds: List[str] = []


class DirectRequest(BaseModel):
    userId: str


class ChannelUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    isPrivate: Optional[bool] = None


class MembersAdd(BaseModel):
    userIds: List[str]


def _channel_out(channel: Channel) -> dict:
    return {
        "id": channel.id,
        "name": channel.name,
        "description": channel.description,
        "type": channel.type.value,
        "isPrivate": channel.is_private,
        "departmentId": channel.department_id,
        "updatedAt": channel.updated_at.isoformat() if channel.updated_at else None,
        "members": [
            {
                "userId": m.user_id,
                "role": m.role.value,
                "user": {
                    "id": m.user.id,
                    "firstName": m.user.first_name,
                    "lastName": m.user.last_name,
                    "avatar": m.user.avatar,
                },
            }
            for m in channel.members
        ],
    }


def _load_channel(db: Session, channel_id: str) -> Channel:
    channel = (
        db.query(Channel)
        .options(selectinload(Channel.members).selectinload(ChannelMember.user))
        .filter(Channel.id == channel_id)
        .first()
    )
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")
    return channel


def _require_channel_admin(db: Session, channel_id: str, user: User, action: str) -> None:
    member = (
        db.query(ChannelMember)
        .filter(
            ChannelMember.channel_id == channel_id,
            ChannelMember.user_id == user.id,
            ChannelMember.role.in_([ChannelRole.OWNER, ChannelRole.ADMIN]),
        )
        .first()
    )
    if not member and not can_moderate_messages(user.role):
        raise HTTPException(status_code=403, detail=f"Not authorized to {action}")


@router.get("")
def list_channels(type: Optional[ChannelType] = None,
                  user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Channels the caller belongs to, most recently active first, with unread counts."""
    query = (
        db.query(Channel)
        .join(ChannelMember, ChannelMember.channel_id == Channel.id)
        .filter(ChannelMember.user_id == user.id)
        .options(selectinload(Channel.members).selectinload(ChannelMember.user))
    )
    if type:
        query = query.filter(Channel.type == type)
    channels = query.order_by(Channel.updated_at.desc()).all()

    out = []
    for channel in channels:
        member = next(m for m in channel.members if m.user_id == user.id)
        unread = db.query(Message).filter(
            Message.channel_id == channel.id,
            Message.sender_id != user.id,
            Message.is_deleted.is_(False),
        )
        if member.last_read is not None:
            unread = unread.filter(Message.created_at > member.last_read)
        out.append({**_channel_out(channel), "unreadCount": unread.count()})
    return out


@router.post("", status_code=201)
def create_channel(body: ChannelCreate,
                   user: User = Depends(require_permission("channels:create")),
                   db: Session = Depends(get_db)):
    channel = Channel(
        name=body.name,
        description=body.description,
        type=body.type,
        is_private=body.isPrivate,
        department_id=body.departmentId,
    )
    channel.members.append(ChannelMember(user_id=user.id, role=ChannelRole.OWNER))
    for member_id in dict.fromkeys(body.memberIds):
        if member_id != user.id:
            channel.members.append(ChannelMember(user_id=member_id, role=ChannelRole.MEMBER))
    db.add(channel)
    db.commit()
    return _channel_out(_load_channel(db, channel.id))


@router.post("/direct")
def open_direct_channel(body: DirectRequest,
                        user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Return the DM channel between the caller and ``userId``, creating it if needed."""
    if body.userId == user.id:
        raise HTTPException(status_code=400, detail="Cannot create DM with yourself")
    if not db.query(User).filter(User.id == body.userId).first():
        raise HTTPException(status_code=404, detail="User not found")

    mine = db.query(ChannelMember.channel_id).filter(ChannelMember.user_id == user.id)
    theirs = db.query(ChannelMember.channel_id).filter(ChannelMember.user_id == body.userId)
    existing = (
        db.query(Channel)
        .filter(Channel.type == ChannelType.DIRECT, Channel.id.in_(mine), Channel.id.in_(theirs))
        .first()
    )
    if existing:
        return _channel_out(_load_channel(db, existing.id))

    channel = Channel(name=f"DM-{user.id}-{body.userId}", type=ChannelType.DIRECT, is_private=True)
    channel.members.append(ChannelMember(user_id=user.id))
    channel.members.append(ChannelMember(user_id=body.userId))
    db.add(channel)
    db.commit()
    return _channel_out(_load_channel(db, channel.id))


@router.post("/{channel_id}/members")
def add_members(channel_id: str, body: MembersAdd,
                user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_channel_admin(db, channel_id, user, "add members")
    channel = _load_channel(db, channel_id)
    present = {m.user_id for m in channel.members}
    for member_id in dict.fromkeys(body.userIds):
        if member_id not in present:
            db.add(ChannelMember(channel_id=channel_id, user_id=member_id))
    db.commit()
    db.expire_all()
    return _channel_out(_load_channel(db, channel_id))


@router.delete("/{channel_id}/members/{user_id}")
async def remove_member(channel_id: str, user_id: str,
                        user: User = Depends(get_current_user), db: Session = Depends(get_db),
                        hub=Depends(get_hub)):
    """Remove a member. Anyone may remove themselves.

    Live sockets of the removed user are taken out of the channel room.
    """
    def _remove() -> None:
        if user_id != user.id:
            _require_channel_admin(db, channel_id, user, "remove members")
        db.query(ChannelMember).filter(
            ChannelMember.channel_id == channel_id, ChannelMember.user_id == user_id
        ).delete(synchronize_session=False)
        db.commit()

    await run_in_threadpool(_remove)
    await hub.evict_from_channel(user_id, channel_id)
    return {"message": "Member removed successfully"}


@router.get("/{channel_id}")
def get_channel(channel_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """A channel the caller belongs to; anything else is a 404."""
    channel = _load_channel(db, channel_id)
    if not any(m.user_id == user.id for m in channel.members):
        raise HTTPException(status_code=404, detail="Channel not found")
    return _channel_out(channel)


@router.put("/{channel_id}")
def update_channel(channel_id: str, body: ChannelUpdate,
                   user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_channel_admin(db, channel_id, user, "update this channel")
    channel = _load_channel(db, channel_id)
    if body.name is not None:
        channel.name = body.name
    if body.description is not None:
        channel.description = body.description
    if body.isPrivate is not None:
        channel.is_private = body.isPrivate
    db.commit()
    db.expire_all()
    return _channel_out(_load_channel(db, channel_id))


@router.delete("/{channel_id}")
async def delete_channel(channel_id: str,
                         user: User = Depends(require_permission("channels:delete")),
                         db: Session = Depends(get_db), hub=Depends(get_hub)):
    """Delete a channel with its members and messages, then empty its room."""
    def _delete() -> List[str]:
        channel = _load_channel(db, channel_id)
        member_ids = [m.user_id for m in channel.members]
        db.delete(channel)
        db.commit()
        return member_ids

    for member_id in await run_in_threadpool(_delete):
        await hub.evict_from_channel(member_id, channel_id)
    return {"message": "Channel deleted successfully"}
