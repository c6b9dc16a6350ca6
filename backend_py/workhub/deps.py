# backend_py/workhub/deps.py
from __future__ import annotations
from fastapi import Depends, HTTPException, Header, Request
from sqlalchemy.orm import Session
from .db import get_db
from .auth_utils import decode_access_token
from .models import User, UserStatus
from .roles import has_permission


def get_current_user(authorization: str | None = Header(default=None),
                     db: Session = Depends(get_db)) -> User:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing token")
    token = authorization.split(" ", 1)[1]
    payload = decode_access_token(token)
    uid = payload.get("sub")
    user = db.query(User).filter(User.id == str(uid)).first() if uid else None
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token")
    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=403, detail="Account is not active")
    return user


def require_permission(*permissions: str):
    """Dependency factory: the caller's role must hold every listed permission."""
    def checker(user: User = Depends(get_current_user)) -> User:
        missing = [p for p in permissions if not has_permission(user.role, p)]
        if missing:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user
    return checker


def get_hub(request: Request):
    """The process-wide RealtimeHub, created at import time in ``workhub.main``."""
    return request.app.state.hub


def get_notification_store(request: Request):
    return request.app.state.notification_store
