"""WebSocket wire protocol for the chat gateway.

Every frame, in both directions, is a JSON object::

    {"event": "<name>", "data": {...}}

Inbound events (client -> server):
    - send:message      {receiverId, content, messageType?, attachment?}
    - typing:start      {receiverId}
    - typing:stop       {receiverId}
    - messages:read     {conversationId, senderId}
    - get:online_users  {}

Outbound events (server -> client):
    - connected             {userId}
    - connect_error         {message}
    - receive:message       <message wire form>
    - message:sent          <message wire form>
    - message:error         {message, error?}
    - user:typing           {userId}
    - user:stopped_typing   {userId}
    - user:online           {userId}
    - user:offline          {userId}
    - messages:read         {conversationId, readBy}
    - online:users          {users}
"""
import json
from typing import ClassVar, Dict, Optional, Type, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from connecthub.conversations.schemas import Attachment, MessageType
from connecthub.errors import ValidationError

# =============================================================================
# Event names
# =============================================================================

SEND_MESSAGE = "send:message"
TYPING_START = "typing:start"
TYPING_STOP = "typing:stop"
MARK_READ = "messages:read"
GET_ONLINE_USERS = "get:online_users"

CONNECTED = "connected"
CONNECT_ERROR = "connect_error"
RECEIVE_MESSAGE = "receive:message"
MESSAGE_SENT = "message:sent"
MESSAGE_ERROR = "message:error"
USER_TYPING = "user:typing"
USER_STOPPED_TYPING = "user:stopped_typing"
USER_ONLINE = "user:online"
USER_OFFLINE = "user:offline"
MESSAGES_READ = "messages:read"
ONLINE_USERS = "online:users"


def frame(event: str, data: Optional[dict] = None) -> dict:
    """Build an outbound frame."""
    return {"event": event, "data": data if data is not None else {}}


# =============================================================================
# Inbound payloads
# =============================================================================


class SendMessagePayload(BaseModel):
    """Payload of ``send:message``.

    Content rules (trimming, length, self-send) are enforced when the message
    is built for persistence, not here.
    """
    EVENT: ClassVar[str] = SEND_MESSAGE

    receiverId: str
    content: str
    messageType: Optional[MessageType] = None
    attachment: Optional[Attachment] = None

    @model_validator(mode="before")
    @classmethod
    def _require_receiver_and_content(cls, data: object) -> object:
        if isinstance(data, dict):
            receiver, content = data.get("receiverId"), data.get("content")
            if not receiver or not isinstance(content, str) or not content:
                raise ValueError("Receiver ID and content are required")
        return data


class TypingPayload(BaseModel):
    """Payload of ``typing:start`` and ``typing:stop``."""
    receiverId: str = Field(..., min_length=1)


class TypingStartPayload(TypingPayload):
    EVENT: ClassVar[str] = TYPING_START


class TypingStopPayload(TypingPayload):
    EVENT: ClassVar[str] = TYPING_STOP


class MarkReadPayload(BaseModel):
    EVENT: ClassVar[str] = MARK_READ

    conversationId: str = Field(..., min_length=1)
    senderId: str = Field(..., min_length=1)


class OnlineUsersQuery(BaseModel):
    EVENT: ClassVar[str] = GET_ONLINE_USERS


InboundPayload = Union[
    SendMessagePayload,
    TypingStartPayload,
    TypingStopPayload,
    MarkReadPayload,
    OnlineUsersQuery,
]

INBOUND_EVENTS: Dict[str, Type[BaseModel]] = {
    model.EVENT: model
    for model in (
        SendMessagePayload,
        TypingStartPayload,
        TypingStopPayload,
        MarkReadPayload,
        OnlineUsersQuery,
    )
}


def parse_inbound(raw: Union[str, bytes, dict]) -> InboundPayload:
    """Decode one inbound frame into its payload model.

    Args:
        raw: Text frame as received, or an already-decoded dict. Binary
            frames (bytes) are rejected.

    Raises:
        ValidationError: Binary frame, bad JSON, unknown event, or an invalid
            payload.
    """
    if isinstance(raw, (bytes, bytearray)):
        raise ValidationError("Malformed frame: binary frames are not supported")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError("Malformed frame: expected JSON") from None

    if not isinstance(raw, dict):
        raise ValidationError("Malformed frame: expected an object")

    event = raw.get("event")
    model = INBOUND_EVENTS.get(event) if isinstance(event, str) else None
    if model is None:
        raise ValidationError(f"Unknown event: {event}")

    data = raw.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(f"Malformed frame: data of {event} must be an object")

    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from None
