"""Pydantic schemas for direct messages and conversations.

A conversation is the thread between exactly two identities. Its identifier is
derived from the two identities alone (sorted, joined with ``_``), so both
participants compute the same key regardless of who wrote first.

These schemas are used by:
    - ConversationStore: DuckDB storage layer
    - ChatGateway: ``send:message`` persistence and delivery
    - /api/chat routes
"""
import re
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from connecthub.errors import ValidationError

# =============================================================================
# Constants
# =============================================================================

# Maximum message length (characters, after trimming)
MAX_CONTENT_LENGTH = 2000

# Identities are opaque account references. "_" is excluded because it
# separates the two halves of a conversation identifier.
IDENTITY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.-]{0,63}$")

CONVERSATION_SEPARATOR = "_"


def is_valid_identity(value: object) -> bool:
    return isinstance(value, str) and bool(IDENTITY_PATTERN.match(value))


def conversation_id(identity_a: str, identity_b: str) -> str:
    """Return the order-independent conversation key for two identities.

    ``conversation_id(a, b) == conversation_id(b, a)`` for all valid a, b.

    Raises:
        ValidationError: If either identity is malformed.
    """
    for value in (identity_a, identity_b):
        if not is_valid_identity(value):
            raise ValidationError(f"Invalid user ID: {value!r}")
    first, second = sorted((identity_a, identity_b))
    return f"{first}{CONVERSATION_SEPARATOR}{second}"


def conversation_participants(conv_id: str) -> Optional[tuple]:
    """Split a conversation key back into its two identities (None if malformed)."""
    if not isinstance(conv_id, str):
        return None
    parts = conv_id.split(CONVERSATION_SEPARATOR)
    if len(parts) != 2 or not all(is_valid_identity(p) for p in parts):
        return None
    return parts[0], parts[1]


# =============================================================================
# Data Models
# =============================================================================


class MessageType(str, Enum):
    """Type of direct message.

    Attributes:
        TEXT: Plain text message.
        IMAGE: Image attachment with optional caption.
        FILE: File attachment.
        LINK: Shared link.
    """
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    LINK = "link"


class Attachment(BaseModel):
    """Descriptor of an uploaded file referenced by a message."""
    url: Optional[str] = Field(default=None, description="Download URL")
    filename: Optional[str] = Field(default=None, description="Original filename")
    size: Optional[int] = Field(default=None, ge=0, description="Size in bytes")
    mimeType: Optional[str] = Field(default=None, description="MIME type")


class MessageCreate(BaseModel):
    """Validated input for a new message.

    Content is trimmed before its length is checked. The maximum length can
    be lowered per call through the validation context key ``max_length``.
    """
    sender: str = Field(..., description="Sender identity")
    receiver: str = Field(..., description="Receiver identity")
    content: str = Field(..., description="Message text")
    messageType: MessageType = Field(default=MessageType.TEXT)
    attachment: Optional[Attachment] = None

    @field_validator("sender", "receiver", mode="before")
    @classmethod
    def _check_identity(cls, value: object, info: ValidationInfo) -> str:
        label = "Sender ID" if info.field_name == "sender" else "Receiver ID"
        if value is None or value == "":
            raise ValueError(f"{label} is required")
        if not is_valid_identity(value):
            raise ValueError(f"Invalid {label.lower()}")
        return value

    @field_validator("content", mode="before")
    @classmethod
    def _check_content(cls, value: object, info: ValidationInfo) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Message content is required")
        value = value.strip()
        max_length = (info.context or {}).get("max_length", MAX_CONTENT_LENGTH)
        if len(value) > max_length:
            raise ValueError(f"Message cannot exceed {max_length} characters")
        return value

    @model_validator(mode="after")
    def _check_participants(self) -> "MessageCreate":
        if self.sender == self.receiver:
            raise ValueError("Cannot send a message to yourself")
        return self

    @property
    def conversation_id(self) -> str:
        return conversation_id(self.sender, self.receiver)


def new_message(
    sender: object,
    receiver: object,
    content: object,
    message_type: object = None,
    attachment: object = None,
    max_length: int = MAX_CONTENT_LENGTH,
) -> MessageCreate:
    """Validate raw values into a MessageCreate.

    Raises:
        ValidationError: With the first problem as its message.
    """
    data = {"sender": sender, "receiver": receiver, "content": content}
    if message_type is not None:
        data["messageType"] = message_type
    if attachment is not None:
        data["attachment"] = attachment
    try:
        return MessageCreate.model_validate(data, context={"max_length": max_length})
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from None


class UserSummary(BaseModel):
    """Display data attached to a message's sender and receiver."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    name: Optional[str] = None
    profilePicture: Optional[str] = None


class StoredMessage(BaseModel):
    """A persisted message with display data for both participants.

    Attributes:
        id: Message identifier (``_id`` on the wire).
        sender: Sender identity and display data.
        receiver: Receiver identity and display data.
        content: Trimmed message text.
        messageType: text, image, file or link.
        attachment: Optional attachment descriptor.
        isRead: Whether the receiver has read it.
        readAt: When it was marked read (UTC).
        isDeleted: Both participants hid it; eligible for hard deletion.
        deletedBy: Identities that hid the message from their own view.
        conversationId: Symmetric conversation key.
        createdAt: Store insert time (UTC).
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    sender: UserSummary
    receiver: UserSummary
    content: str
    messageType: MessageType = MessageType.TEXT
    attachment: Optional[Attachment] = None
    isRead: bool = False
    readAt: Optional[datetime] = None
    isDeleted: bool = False
    deletedBy: List[str] = Field(default_factory=list)
    conversationId: str
    createdAt: datetime

    @property
    def sender_id(self) -> str:
        return self.sender.id

    @property
    def receiver_id(self) -> str:
        return self.receiver.id

    def to_wire(self) -> dict:
        """JSON-ready form used in WebSocket events, HTTP responses and the cache."""
        return self.model_dump(mode="json", by_alias=True, exclude={"isDeleted", "deletedBy"})


class ConversationSummary(BaseModel):
    """One row of a user's conversation list."""
    model_config = ConfigDict(populate_by_name=True)

    conversationId: str = Field(..., alias="_id")
    lastMessage: StoredMessage
    unreadCount: int = 0

    def to_wire(self) -> dict:
        return {
            "_id": self.conversationId,
            "lastMessage": self.lastMessage.to_wire(),
            "unreadCount": self.unreadCount,
        }
