"""REST fallback for the message socket events.

Writes go through the hub's dispatcher, so a message posted over HTTP is
ordered and fanned out exactly like one sent over a socket.
"""

from __future__ import annotations
import math
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session, joinedload

from ..db import get_db
from ..deps import get_current_user, get_hub
from ..models import ChannelMember, Message, User
from ..realtime.errors import AuthorizationFailure, RealtimeError, ValidationFailure
from ..services.stores import identity_from_user, serialize_message

router = APIRouter(prefix="/messages", tags=["messages"])


class MessageCreate(BaseModel):
    channelId: str
    content: str
    parentId: Optional[str] = None


class MessageUpdate(BaseModel):
    content: str


class ReadBody(BaseModel):
    channelId: str


async def _dispatch(operation, user: User, data: Dict[str, Any]):
    try:
        return await operation(identity_from_user(user), data)
    except ValidationFailure as e:
        raise HTTPException(status_code=400, detail=e.message)
    except AuthorizationFailure as e:
        raise HTTPException(status_code=403, detail=e.message)
    except RealtimeError as e:
        raise HTTPException(status_code=500, detail=e.message)


@router.get("/channel/{channel_id}")
def list_messages(channel_id: str,
                  page: int = Query(1, ge=1),
                  limit: int = Query(50, ge=1, le=100),
                  before: Optional[datetime] = None,
                  user: User = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    """A page of live messages, newest page first, each page in chronological order."""
    member = db.query(ChannelMember).filter(
        ChannelMember.channel_id == channel_id, ChannelMember.user_id == user.id
    ).first()
    if not member:
        raise HTTPException(status_code=403, detail="Not a member of this channel")

    query = db.query(Message).filter(Message.channel_id == channel_id, Message.is_deleted.is_(False))
    if before:
        query = query.filter(Message.created_at < before)
    total = query.count()
    rows = (
        query.options(joinedload(Message.sender))
        .order_by(Message.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    member.last_read = datetime.now(timezone.utc)
    db.commit()

    return {
        "data": [serialize_message(m) for m in reversed(rows)],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit) if total else 0,
        },
    }


@router.get("/search")
def search_messages(q: str = "",
                    channelId: Optional[str] = None,
                    limit: int = Query(20, ge=1, le=100),
                    user: User = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    """Live messages containing ``q`` in the caller's channels, newest first."""
    if len(q.strip()) < 2:
        raise HTTPException(status_code=400, detail="Search query must be at least 2 characters")

    mine = db.query(ChannelMember.channel_id).filter(ChannelMember.user_id == user.id)
    query = (
        db.query(Message)
        .options(joinedload(Message.sender), joinedload(Message.channel))
        .filter(
            Message.channel_id.in_(mine),
            Message.is_deleted.is_(False),
            Message.content.ilike(f"%{q.strip()}%"),
        )
    )
    if channelId:
        query = query.filter(Message.channel_id == channelId)
    rows = query.order_by(Message.created_at.desc()).limit(limit).all()
    return [
        {
            **serialize_message(m),
            "channel": {"id": m.channel.id, "name": m.channel.name, "type": m.channel.type.value},
        }
        for m in rows
    ]


@router.post("", status_code=201)
async def send_message(body: MessageCreate, user: User = Depends(get_current_user), hub=Depends(get_hub)):
    return await _dispatch(hub.dispatcher.send, user, body.model_dump())


@router.put("/{message_id}")
async def edit_message(message_id: str, body: MessageUpdate,
                       user: User = Depends(get_current_user), hub=Depends(get_hub)):
    return await _dispatch(hub.dispatcher.edit, user, {"messageId": message_id, "content": body.content})


@router.delete("/{message_id}")
async def delete_message(message_id: str, user: User = Depends(get_current_user), hub=Depends(get_hub)):
    await _dispatch(hub.dispatcher.delete, user, {"messageId": message_id})
    return {"message": "Message deleted successfully"}


@router.post("/{message_id}/read")
async def mark_read(message_id: str, body: ReadBody,
                    user: User = Depends(get_current_user), hub=Depends(get_hub)):
    return await _dispatch(hub.dispatcher.mark_read, user, {"messageId": message_id, "channelId": body.channelId})
