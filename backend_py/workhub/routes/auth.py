from __future__ import annotations
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from ..models import User, UserStatus
from ..db import get_db
from ..deps import get_current_user
from ..auth_utils import create_token_pair, verify_password, verify_refresh_token
from ..roles import get_role_name, get_role_permissions

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refreshToken: str


def _user_out(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "avatar": user.avatar,
        "role": user.role.value,
        "roleName": get_role_name(user.role),
        "status": user.status.value,
        "departmentId": user.department_id,
    }


@router.post("/login")
def login_user(body: LoginRequest, db: Session = Depends(get_db)):
    """Authenticate a user and return an access/refresh token pair."""
    user = db.query(User).filter(User.email == body.email).first()
    if not user or not verify_password(body.password, user.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=403, detail="Account is not active")

    tokens = create_token_pair(user)
    user.refresh_token = tokens["refreshToken"]
    user.last_login = datetime.now(timezone.utc)
    db.commit()

    return {"user": _user_out(user), **tokens}


@router.post("/refresh")
def refresh_tokens(body: RefreshRequest, db: Session = Depends(get_db)):
    """Rotate the token pair. The presented refresh token must be the stored one."""
    payload = verify_refresh_token(body.refreshToken)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    user = db.query(User).filter(User.id == str(payload.get("sub"))).first()
    if not user or user.refresh_token != body.refreshToken:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=403, detail="Account is not active")

    tokens = create_token_pair(user)
    user.refresh_token = tokens["refreshToken"]
    db.commit()
    return tokens


@router.post("/logout")
def logout_user(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Forget the stored refresh token so it can no longer be rotated."""
    current_user.refresh_token = None
    db.commit()
    return {"message": "Logged out successfully"}


@router.get("/me")
def get_me(current_user: User = Depends(get_current_user)):
    """Return the currently authenticated user's information."""
    return {"user": _user_out(current_user), "permissions": get_role_permissions(current_user.role)}
