"""Socket event names and inbound payload schemas."""

from __future__ import annotations

from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ValidationFailure

# Inbound
CHANNEL_JOIN = "channel:join"
CHANNEL_LEAVE = "channel:leave"
MESSAGE_SEND = "message:send"
MESSAGE_EDIT = "message:edit"
MESSAGE_DELETE = "message:delete"
MESSAGE_READ = "message:read"
TYPING_START = "typing:start"
TYPING_STOP = "typing:stop"
PRESENCE_REQUEST = "presence:request"
NOTIFICATION_READ = "notification:read"

# Outbound
CHANNEL_JOINED = "channel:joined"
CHANNEL_LEFT = "channel:left"
MESSAGE_NEW = "message:new"
MESSAGE_UPDATED = "message:updated"
MESSAGE_DELETED = "message:deleted"
TYPING_UPDATE = "typing:update"
PRESENCE_UPDATE = "presence:update"
PRESENCE_SNAPSHOT = "presence:snapshot"
NOTIFICATION_NEW = "notification:new"
ERROR = "error"


class ChannelRef(BaseModel):
    channelId: str = Field(..., min_length=1)


class MessageSend(BaseModel):
    channelId: str = Field(..., min_length=1)
    content: str
    parentId: Optional[str] = None
    # Client correlation id, echoed back untouched
    tempId: Optional[Any] = None

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message content cannot be empty")
        return value


class MessageEdit(BaseModel):
    messageId: str = Field(..., min_length=1)
    content: str

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message content cannot be empty")
        return value


class MessageRef(BaseModel):
    messageId: str = Field(..., min_length=1)


class MessageRead(BaseModel):
    messageId: str = Field(..., min_length=1)
    channelId: str = Field(..., min_length=1)


class PresenceRequest(BaseModel):
    identityIds: List[str] = Field(default_factory=list)


class NotificationRef(BaseModel):
    notificationId: str = Field(..., min_length=1)


Model = TypeVar("Model", bound=BaseModel)

# Events whose payload may arrive as a bare id instead of an object
_BARE_FIELDS = {
    ChannelRef: "channelId",
    MessageRef: "messageId",
    NotificationRef: "notificationId",
    PresenceRequest: "identityIds",
}


def parse_payload(model: Type[Model], data: Any) -> Model:
    """Validate an inbound payload, raising ``ValidationFailure`` on error."""
    bare_field = _BARE_FIELDS.get(model)
    if bare_field is not None and not isinstance(data, dict):
        data = {bare_field: data}
    if not isinstance(data, dict):
        raise ValidationFailure("Invalid payload")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        msg = first.get("msg", "invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        raise ValidationFailure(f"{field}: {msg}") from exc
