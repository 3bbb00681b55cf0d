"""HTTP chat API: conversation history and message management.

All routes require ``Authorization: Bearer <access token>`` and act on behalf
of the token's identity. Sends go through the same path as the WebSocket
``send:message`` event, so an online receiver gets ``receive:message`` either
way.

Endpoints:
    - POST   /api/chat                        Send a message
    - GET    /api/chat                        List conversations
    - GET    /api/chat/unread-count           Unread messages addressed to me
    - GET    /api/chat/search?q=              Search my messages
    - PUT    /api/chat/profile                Set my display data
    - GET    /api/chat/profiles?ids=          Display data of other users
    - GET    /api/chat/{userId}               Conversation page (oldest first)
    - GET    /api/chat/{userId}/recent        Newest messages (cache first)
    - PUT    /api/chat/{userId}/read          Mark conversation read
    - DELETE /api/chat/messages/{messageId}   Delete a message for me

Every response is ``{"success": true, "data": ...}``; errors are rendered by
the ChatError handler in ``connecthub.main``.
"""
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from connecthub.auth.tokens import TokenClaims
from connecthub.auth.dependencies import current_identity
from connecthub.config import get_config
from connecthub.conversations.schemas import conversation_id
from connecthub.errors import ValidationError

from .gateway import ChatGateway, get_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


class SendMessageRequest(BaseModel):
    """Body of POST /api/chat. Field rules are checked when the message is built."""
    receiverId: Optional[Any] = None
    content: Optional[Any] = None
    messageType: Optional[str] = None
    attachment: Optional[dict] = None


class ProfileRequest(BaseModel):
    """Body of PUT /api/chat/profile."""
    name: Optional[str] = Field(default=None, max_length=100)
    profilePicture: Optional[str] = Field(default=None, max_length=2048)
    email: Optional[str] = Field(default=None, max_length=254)


def _gateway() -> ChatGateway:
    return get_gateway()


def _ok(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse({"success": True, "data": data}, status_code=status_code)


@router.post("", status_code=201)
async def send_message(
    body: SendMessageRequest,
    me: TokenClaims = Depends(current_identity),
) -> JSONResponse:
    """Send a direct message.

    Returns:
        The stored message (201 Created).
    """
    if not body.receiverId or not body.content:
        raise ValidationError("Receiver ID and content are required")
    stored = await _gateway().persist_and_deliver(
        me.userId,
        body.receiverId,
        body.content,
        message_type=body.messageType,
        attachment=body.attachment,
    )
    logger.info("[API] %s sent message %s to %s", me.userId, stored.id, stored.receiver_id)
    return _ok(stored.to_wire(), status_code=201)


@router.get("")
async def list_conversations(me: TokenClaims = Depends(current_identity)) -> JSONResponse:
    """List my conversations, most recently active first."""
    summaries = await _gateway().store.list_conversations_for(me.userId)
    return _ok([s.to_wire() for s in summaries])


@router.get("/unread-count")
async def unread_count(me: TokenClaims = Depends(current_identity)) -> JSONResponse:
    count = await _gateway().store.unread_count(me.userId)
    return _ok({"unreadCount": count})


@router.get("/search")
async def search_messages(
    q: str = Query("", description="Text to search for"),
    limit: int = Query(20, description="Maximum number of hits"),
    me: TokenClaims = Depends(current_identity),
) -> JSONResponse:
    """Case-insensitive substring search over my messages, newest first."""
    hits = await _gateway().store.search(me.userId, q, limit)
    return _ok([m.to_wire() for m in hits])


@router.put("/profile")
async def update_profile(
    body: ProfileRequest,
    me: TokenClaims = Depends(current_identity),
) -> JSONResponse:
    """Set the display data shown as my ``sender``/``receiver`` on messages."""
    profile = await _gateway().store.upsert_user(me.userId, body.name, body.profilePicture, body.email)
    logger.info("[API] %s updated profile", me.userId)
    return _ok(profile.model_dump(by_alias=True))


@router.get("/profiles")
async def get_profiles(
    ids: List[str] = Query([], description="User ids to look up"),
    me: TokenClaims = Depends(current_identity),
) -> JSONResponse:
    """Display data for a set of users (e.g. the online list)."""
    if len(ids) > get_config().chat.max_page_size:
        raise ValidationError(f"At most {get_config().chat.max_page_size} ids per request")
    profiles = await _gateway().store.get_profiles(ids)
    return _ok([p.model_dump(by_alias=True) for p in profiles.values()])


@router.get("/{user_id}")
async def get_conversation(
    user_id: str,
    page: int = Query(1, description="1-based page number"),
    limit: Optional[int] = Query(None, description="Messages per page"),
    me: TokenClaims = Depends(current_identity),
) -> JSONResponse:
    """One page of my conversation with ``user_id``, oldest first.

    Args:
        user_id: The other participant.
        page: Page number (default 1).
        limit: Page size (default from chat settings).
    """
    page_size = limit if limit is not None else get_config().chat.default_page_size
    messages = await _gateway().store.get_page(me.userId, user_id, page, page_size)
    return _ok({
        "conversationId": conversation_id(me.userId, user_id),
        "messages": [m.to_wire() for m in messages],
        "page": page,
        "limit": page_size,
    })


@router.get("/{user_id}/recent")
async def get_recent(
    user_id: str,
    limit: Optional[int] = Query(None, description="Maximum number of messages"),
    me: TokenClaims = Depends(current_identity),
) -> JSONResponse:
    """Newest messages of my conversation with ``user_id``, most recent first."""
    size = limit if limit is not None else get_config().chat.default_page_size
    if size < 1 or size > get_config().chat.max_page_size:
        raise ValidationError(f"Limit must be between 1 and {get_config().chat.max_page_size}")
    messages, source = await _gateway().recent_messages(me.userId, user_id, size)
    return _ok({"messages": messages, "source": source})


@router.put("/{user_id}/read")
async def mark_read(user_id: str, me: TokenClaims = Depends(current_identity)) -> JSONResponse:
    """Mark every message ``user_id`` sent me as read."""
    if user_id == me.userId:
        raise ValidationError("Cannot mark a conversation with yourself")
    changed = await _gateway().mark_conversation_read(me.userId, user_id)
    logger.info("[API] %s marked %d message(s) from %s as read", me.userId, changed, user_id)
    return _ok({"conversationId": conversation_id(me.userId, user_id), "modified": changed})


@router.delete("/messages/{message_id}")
async def delete_message(message_id: str, me: TokenClaims = Depends(current_identity)) -> JSONResponse:
    """Hide a message from my view. It is purged once both sides delete it."""
    message = await _gateway().delete_message(message_id, me.userId)
    logger.info("[API] %s deleted message %s", me.userId, message_id)
    return _ok({"_id": message.id, "isDeleted": message.isDeleted})
