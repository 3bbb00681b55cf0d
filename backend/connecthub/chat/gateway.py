"""Chat gateway: connection lifecycle and event handling.

The gateway is the only component that talks to clients. It authenticates
each socket with an access token, keeps presence up to date, and turns
inbound events into store writes and targeted deliveries.

Delivery model:
    - ``receive:message`` and read notices go to the single connection the
      presence registry holds for the target identity (last connection wins).
    - ``user:online`` / ``user:offline`` go to every other active connection.
    - Nothing is queued for offline identities; they catch up through the
      conversation store (or the recent-message cache) later.

Error policy for event handlers:
    - ValidationError: ``message:error`` to the acting client.
    - StoreUnavailable on send: one ``message:error`` with a generic message.
    - NotFoundError: logged, ignored.
    - CacheUnavailable: logged, never surfaces.
    - Anything else: logged with traceback, generic ``message:error``.
The connection stays open in every case.
"""
import logging
from typing import Awaitable, List, Optional, Tuple

from fastapi import WebSocket

from connecthub.auth.tokens import TokenVerifier
from connecthub.cache.recent import RecentMessageCache
from connecthub.conversations.schemas import (
    MAX_CONTENT_LENGTH,
    StoredMessage,
    conversation_id,
    conversation_participants,
    new_message,
)
from connecthub.conversations.store import ConversationStore
from connecthub.errors import (
    CacheUnavailable,
    InvalidToken,
    NotFoundError,
    StoreUnavailable,
    ValidationError,
)
from connecthub.presence.registry import PresenceRegistry

from .connections import ClientConnection, ConnectionManager, ConnectionState
from .schemas import (
    CONNECT_ERROR,
    CONNECTED,
    MESSAGE_ERROR,
    MESSAGE_SENT,
    MESSAGES_READ,
    ONLINE_USERS,
    RECEIVE_MESSAGE,
    USER_OFFLINE,
    USER_ONLINE,
    USER_STOPPED_TYPING,
    USER_TYPING,
    MarkReadPayload,
    OnlineUsersQuery,
    SendMessagePayload,
    TypingStartPayload,
    TypingStopPayload,
    parse_inbound,
)

logger = logging.getLogger(__name__)

# WebSocket close code for authentication failures
POLICY_VIOLATION = 1008


def _preview(text: str) -> str:
    return text[:50] + "..." if len(text) > 50 else text


class ChatGateway:
    """Real-time chat endpoint logic, independent of the ASGI route."""

    def __init__(
        self,
        verifier: TokenVerifier,
        presence: PresenceRegistry,
        store: ConversationStore,
        cache: Optional[RecentMessageCache] = None,
        connections: Optional[ConnectionManager] = None,
        auto_responder=None,
        max_content_length: int = MAX_CONTENT_LENGTH,
    ) -> None:
        self.verifier = verifier
        self.presence = presence
        self.store = store
        self.cache = cache if cache is not None else RecentMessageCache(None)
        self.connections = connections if connections is not None else ConnectionManager()
        self.auto_responder = auto_responder
        self.max_content_length = max_content_length

    # -----------------------------------------------------------------------
    # Connection lifecycle
    # -----------------------------------------------------------------------

    async def connect(self, websocket: WebSocket, token: Optional[str]) -> Optional[ClientConnection]:
        """Accept a socket and bring it to the active state.

        Returns:
            The active connection, or None if authentication failed (the
            socket has then been closed with code 1008 and nothing was
            registered).
        """
        await websocket.accept()
        connection = ClientConnection(websocket)

        if not token:
            await self._reject(connection, "Authentication error: No token provided")
            return None
        try:
            claims = self.verifier.verify_access(token)
        except InvalidToken as e:
            await self._reject(connection, f"Authentication error: {e.message}")
            return None
        connection.authenticate(claims)

        user_id = connection.user_id
        self.presence.register(user_id, connection)
        self.connections.add(connection)
        connection.state = ConnectionState.ACTIVE
        logger.info(f"[Gateway] {user_id} connected (connection {connection.connection_id})")

        await self._best_effort(self.cache.mark_online(user_id), "mark_online")
        await self.connections.broadcast_except(USER_ONLINE, {"userId": user_id}, exclude=connection)
        await connection.emit(CONNECTED, {"userId": user_id})
        return connection

    async def _reject(self, connection: ClientConnection, reason: str) -> None:
        logger.warning(f"[Gateway] Rejecting connection {connection.connection_id}: {reason}")
        await connection.emit(CONNECT_ERROR, {"message": reason})
        connection.state = ConnectionState.CLOSED
        try:
            await connection.websocket.close(code=POLICY_VIOLATION)
        except Exception as e:
            logger.debug(f"[Gateway] Close after rejection failed: {e}")

    async def disconnect(self, connection: ClientConnection) -> None:
        """Move a connection to closed. Safe to call more than once.

        ``user:offline`` is broadcast only if the identity actually went
        offline, i.e. this connection was still its registered handle.
        """
        if connection.state == ConnectionState.CLOSED:
            return
        was_active = connection.state == ConnectionState.ACTIVE
        connection.state = ConnectionState.CLOSED
        self.connections.remove(connection)

        user_id = connection.user_id
        if not was_active or user_id is None:
            return
        if not self.presence.unregister(user_id, connection):
            logger.info(f"[Gateway] Stale connection of {user_id} closed; newer connection kept")
            return

        logger.info(f"[Gateway] {user_id} disconnected")
        await self._best_effort(self.cache.mark_offline(user_id), "mark_offline")
        if self.presence.lookup(user_id) is not None:
            # Reconnected while the offline mirror was being written
            logger.info(f"[Gateway] {user_id} reconnected during disconnect; staying online")
            await self._best_effort(self.cache.mark_online(user_id), "mark_online")
            return
        await self.connections.broadcast(USER_OFFLINE, {"userId": user_id})

    # -----------------------------------------------------------------------
    # Inbound events
    # -----------------------------------------------------------------------

    async def handle_frame(self, connection: ClientConnection, raw) -> None:
        """Parse and dispatch one inbound frame. Never raises."""
        if not connection.is_active:
            logger.debug(f"[Gateway] Ignoring frame on {connection!r}")
            return
        try:
            payload = parse_inbound(raw)
            if isinstance(payload, SendMessagePayload):
                await self._on_send(connection, payload)
            elif isinstance(payload, TypingStartPayload):
                await self._deliver(payload.receiverId, USER_TYPING, {"userId": connection.user_id})
            elif isinstance(payload, TypingStopPayload):
                await self._deliver(payload.receiverId, USER_STOPPED_TYPING, {"userId": connection.user_id})
            elif isinstance(payload, MarkReadPayload):
                await self._on_mark_read(connection, payload)
            elif isinstance(payload, OnlineUsersQuery):
                await connection.emit(ONLINE_USERS, {"users": sorted(self.presence.all_online())})
        except ValidationError as e:
            logger.info(f"[Gateway] Rejected frame from {connection.user_id}: {e.message}")
            await connection.emit(MESSAGE_ERROR, {"message": e.message})
        except NotFoundError as e:
            logger.warning(f"[Gateway] {e.message} (from {connection.user_id})")
        except StoreUnavailable as e:
            logger.error(f"[Gateway] Store unavailable while handling frame from {connection.user_id}: {e}")
            await connection.emit(MESSAGE_ERROR, {"message": e.message})
        except Exception:
            logger.exception(f"[Gateway] Unhandled error for frame from {connection.user_id}")
            await connection.emit(MESSAGE_ERROR, {"message": "Internal server error"})

    async def _on_send(self, connection: ClientConnection, payload: SendMessagePayload) -> None:
        try:
            stored = await self.persist_and_deliver(
                connection.user_id,
                payload.receiverId,
                payload.content,
                message_type=payload.messageType,
                attachment=payload.attachment.model_dump() if payload.attachment else None,
            )
        except StoreUnavailable as e:
            logger.error(f"[Gateway] Failed to save message from {connection.user_id}: {e}")
            await connection.emit(MESSAGE_ERROR, {"message": "Failed to send message", "error": e.message})
            return
        await connection.emit(MESSAGE_SENT, stored.to_wire())

    async def _on_mark_read(self, connection: ClientConnection, payload: MarkReadPayload) -> None:
        participants = conversation_participants(payload.conversationId)
        if participants is None or connection.user_id not in participants:
            raise ValidationError("Invalid conversation ID")
        if payload.senderId not in participants or payload.senderId == connection.user_id:
            raise ValidationError("Sender is not the other participant of this conversation")
        await self.mark_conversation_read(connection.user_id, payload.senderId)

    # -----------------------------------------------------------------------
    # Operations shared with the HTTP chat API
    # -----------------------------------------------------------------------

    async def persist_and_deliver(
        self,
        sender_id: str,
        receiver_id,
        content,
        message_type=None,
        attachment=None,
    ) -> StoredMessage:
        """Validate, persist, cache and deliver one message.

        The message is persisted before anything is delivered. Cache and
        delivery failures do not fail the call.

        Raises:
            ValidationError: Invalid receiver, content, or a self-send.
            StoreUnavailable: The store rejected the write (nothing delivered).
        """
        message = new_message(
            sender_id,
            receiver_id,
            content,
            message_type=message_type,
            attachment=attachment,
            max_length=self.max_content_length,
        )
        stored = await self.store.create(message)
        logger.info(
            f"[Gateway] {stored.sender_id} -> {stored.receiver_id}: '{_preview(stored.content)}'"
        )

        wire = stored.to_wire()
        await self._best_effort(self.cache.push(stored.conversationId, wire), "push")
        if not await self._deliver(stored.receiver_id, RECEIVE_MESSAGE, wire):
            logger.debug(f"[Gateway] {stored.receiver_id} offline; message {stored.id} stored only")

        if self.auto_responder is not None:
            self.auto_responder.on_message_persisted(stored)
        return stored

    async def mark_conversation_read(self, reader_id: str, other_id: str) -> int:
        """Mark the other participant's messages to ``reader_id`` as read.

        Notifies ``other_id`` with ``messages:read`` if it is online.

        Returns:
            Number of messages that changed state.
        """
        conv_id = conversation_id(reader_id, other_id)
        changed = await self.store.mark_read(conv_id, reader_id)
        await self._best_effort(self.cache.invalidate(conv_id), "invalidate")
        await self._deliver(other_id, MESSAGES_READ, {"conversationId": conv_id, "readBy": reader_id})
        return changed

    async def delete_message(self, message_id: str, actor_id: str) -> StoredMessage:
        """Soft-delete a message for ``actor_id`` and drop its cached conversation."""
        message = await self.store.soft_delete(message_id, actor_id)
        await self._best_effort(self.cache.invalidate(message.conversationId), "invalidate")
        return message

    async def recent_messages(
        self, requester_id: str, other_id: str, limit: int = 50
    ) -> Tuple[List[dict], str]:
        """Newest messages of a conversation, most recent first.

        The cache only holds what was pushed since the conversation was last
        invalidated or expired, so it is served only when it covers the whole
        window (at least ``limit`` messages). Otherwise the store answers.

        Returns:
            (messages in wire form, source) where source is "cache" or "store".
        """
        conv_id = conversation_id(requester_id, other_id)
        try:
            cached = await self.cache.get(conv_id)
        except CacheUnavailable as e:
            logger.warning(f"[Gateway] Cache read failed for {conv_id}: {e}")
            cached = []
        if len(cached) >= limit:
            return cached[:limit], "cache"
        if cached:
            logger.debug(f"[Gateway] Cache holds {len(cached)}/{limit} for {conv_id}; reading store")
        stored = await self.store.get_recent(requester_id, other_id, limit)
        return [m.to_wire() for m in stored], "store"

    async def deliver_reply(self, message: StoredMessage) -> None:
        """Listener for auto-responder replies (already persisted)."""
        await self._best_effort(self.cache.push(message.conversationId, message.to_wire()), "push")
        await self._deliver(message.receiver_id, RECEIVE_MESSAGE, message.to_wire())

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    async def _deliver(self, identity: str, event: str, data: dict) -> bool:
        """Send to the registered connection of ``identity``, if online."""
        handle = self.presence.lookup(identity)
        if handle is None:
            return False
        return await handle.emit(event, data)

    async def _best_effort(self, operation: Awaitable, what: str) -> None:
        try:
            await operation
        except CacheUnavailable as e:
            logger.warning(f"[Gateway] Cache {what} failed: {e}")


# =============================================================================
# Global instance (set during application startup)
# =============================================================================

_gateway: Optional[ChatGateway] = None


def get_gateway() -> ChatGateway:
    """Return the gateway built at startup."""
    if _gateway is None:
        raise RuntimeError("Chat gateway not initialized")
    return _gateway


def set_gateway(gateway: Optional[ChatGateway]) -> None:
    """Set (or clear) the global gateway."""
    global _gateway
    _gateway = gateway
