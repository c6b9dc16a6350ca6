from __future__ import annotations
from fastapi import APIRouter, Depends

from ..deps import get_current_user, get_hub
from ..models import User

router = APIRouter(prefix="/presence", tags=["presence"])


@router.get("/online-count")
def online_count(user: User = Depends(get_current_user), hub=Depends(get_hub)):
    return {"count": hub.get_online_users_count()}


@router.get("/{user_id}")
def user_presence(user_id: str, user: User = Depends(get_current_user), hub=Depends(get_hub)):
    return {"userId": user_id, "online": hub.is_user_online(user_id)}
