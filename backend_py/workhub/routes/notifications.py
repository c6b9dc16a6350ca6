from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user, get_hub, get_notification_store, require_permission
from ..models import Notification, User
from ..services.notifications import notify_user
from ..services.stores import serialize_notification

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationCreate(BaseModel):
    userId: str
    type: str
    title: str
    message: str
    data: Optional[Dict[str, Any]] = None


@router.get("")
def list_notifications(unread_only: bool = Query(False, alias="unreadOnly"),
                       limit: int = Query(50, ge=1, le=200),
                       user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    rows = query.order_by(Notification.created_at.desc()).limit(limit).all()
    return [serialize_notification(n) for n in rows]


@router.get("/unread-count")
def unread_count(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    count = db.query(Notification).filter(
        Notification.user_id == user.id, Notification.is_read.is_(False)
    ).count()
    return {"count": count}


# Declared before "/{notification_id}/read" so "read-all" is not taken as an id.
@router.put("/read-all")
def mark_all_read(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    updated = db.query(Notification).filter(
        Notification.user_id == user.id, Notification.is_read.is_(False)
    ).update({Notification.is_read: True, Notification.read_at: datetime.now(timezone.utc)},
             synchronize_session=False)
    db.commit()
    return {"updated": updated}


@router.put("/{notification_id}/read")
def mark_read(notification_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    notification = db.query(Notification).filter(
        Notification.id == notification_id, Notification.user_id == user.id
    ).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    notification.is_read = True
    notification.read_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(notification)
    return serialize_notification(notification)


@router.post("", status_code=201)
async def create_notification(body: NotificationCreate,
                              user: User = Depends(require_permission("admin:settings")),
                              db: Session = Depends(get_db),
                              hub=Depends(get_hub),
                              store=Depends(get_notification_store)):
    """Create a notification for one user and push it to their open sockets."""
    if not db.query(User.id).filter(User.id == body.userId).first():
        raise HTTPException(status_code=404, detail="User not found")
    return await notify_user(hub, store, body.userId, body.type, body.title, body.message, body.data)
