"""DuckDB-based storage for direct messages.

This module is the durable source of truth for chat history. The recent-
message cache in front of it is advisory only.

Database Schema:
    messages table:
        - id: Message identifier (uuid4 hex)
        - seq: Insertion sequence; secondary sort key for equal timestamps
        - sender / receiver: Participant identities
        - content, message_type, attachment (JSON text)
        - is_read, read_at: Read receipt state
        - is_deleted: Hidden by both participants (eligible for purging)
        - conversation_id: Symmetric two-party key
        - created_at: Store clock at insert time (UTC)
    message_deletions table:
        - (message_id, user_id): who hid which message from their own view
    users table:
        - id, name, profile_picture, email: display data joined onto messages

Ordering:
    Messages are ordered by (created_at, seq). Both are assigned here, under
    the store lock, so the store is the single clock for a conversation no
    matter in which order concurrent sends reached the gateway.

Thread Safety:
    The DuckDB connection is NOT thread-safe. All access goes through one
    lock, and every public coroutine runs its query in a worker thread so the
    event loop is never blocked by the database.

Usage:
    store = ConversationStore(db_path=":memory:")
    message = await store.create(new_message("alice", "bob", "Hi"))
    page = await store.get_page("bob", "alice")
"""
import asyncio
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

import duckdb

from connecthub.errors import NotFoundError, StoreUnavailable, ValidationError

from .schemas import (
    Attachment,
    ConversationSummary,
    MessageCreate,
    MessageType,
    StoredMessage,
    UserSummary,
    conversation_id,
    is_valid_identity,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default page size for conversation pagination
DEFAULT_PAGE_SIZE = 50

# Maximum page size to prevent abuse
MAX_PAGE_SIZE = 100

# Default number of hits returned by message search
DEFAULT_SEARCH_LIMIT = 20

_SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS messages (
        id              VARCHAR PRIMARY KEY,
        seq             BIGINT NOT NULL DEFAULT nextval('messages_seq'),
        sender          VARCHAR NOT NULL,
        receiver        VARCHAR NOT NULL,
        content         VARCHAR NOT NULL,
        message_type    VARCHAR NOT NULL DEFAULT 'text',
        attachment      VARCHAR,
        is_read         BOOLEAN NOT NULL DEFAULT FALSE,
        read_at         TIMESTAMP,
        is_deleted      BOOLEAN NOT NULL DEFAULT FALSE,
        conversation_id VARCHAR NOT NULL,
        created_at      TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_receiver ON messages(receiver)",
    """
    CREATE TABLE IF NOT EXISTS message_deletions (
        message_id VARCHAR NOT NULL,
        user_id    VARCHAR NOT NULL,
        deleted_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id              VARCHAR PRIMARY KEY,
        name            VARCHAR,
        profile_picture VARCHAR,
        email           VARCHAR
    )
    """,
]

# Shared projection: message columns plus display data of both participants.
_MESSAGE_COLUMNS = """
    m.id, m.sender, su.name, su.profile_picture,
    m.receiver, ru.name, ru.profile_picture,
    m.content, m.message_type, m.attachment,
    m.is_read, m.read_at, m.is_deleted,
    (SELECT array_agg(d.user_id) FROM message_deletions d WHERE d.message_id = m.id),
    m.conversation_id, m.created_at
"""

_MESSAGE_JOINS = """
    LEFT JOIN users su ON su.id = m.sender
    LEFT JOIN users ru ON ru.id = m.receiver
"""

# Excludes messages the bound identity hid from its own view.
_NOT_HIDDEN_BY = """
    NOT EXISTS (
        SELECT 1 FROM message_deletions d
        WHERE d.message_id = m.id AND d.user_id = ?
    )
"""


def _utcnow() -> datetime:
    # DuckDB TIMESTAMP columns are naive; everything stored here is UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _row_to_message(row: tuple) -> StoredMessage:
    (msg_id, sender, sender_name, sender_pic,
     receiver, receiver_name, receiver_pic,
     content, message_type, attachment,
     is_read, read_at, is_deleted, deleted_by,
     conv_id, created_at) = row[:16]
    return StoredMessage(
        id=msg_id,
        sender=UserSummary(id=sender, name=sender_name, profilePicture=sender_pic),
        receiver=UserSummary(id=receiver, name=receiver_name, profilePicture=receiver_pic),
        content=content,
        messageType=MessageType(message_type),
        attachment=Attachment(**json.loads(attachment)) if attachment else None,
        isRead=bool(is_read),
        readAt=_as_utc(read_at),
        isDeleted=bool(is_deleted),
        deletedBy=sorted(deleted_by or []),
        conversationId=conv_id,
        createdAt=_as_utc(created_at),
    )


class ConversationStore:
    """Persists messages and answers conversation queries.

    Attributes:
        max_page_size: Upper bound accepted for ``page_size``/``limit``.
    """

    def __init__(self, db_path: str = ":memory:", max_page_size: int = MAX_PAGE_SIZE) -> None:
        """Open (or create) the database and ensure the schema exists.

        Args:
            db_path: DuckDB file path, or ``":memory:"``.
            max_page_size: Largest page a caller may request.
        """
        self._db_path = db_path
        self.max_page_size = max_page_size
        self._lock = threading.Lock()
        self._conn: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(db_path)
        for statement in _SCHEMA:
            self._conn.execute(statement)
        logger.info("[Store] Initialized with db=%s", db_path)

    # -----------------------------------------------------------------------
    # Plumbing
    # -----------------------------------------------------------------------

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise StoreUnavailable("Message store is closed")
        return self._conn

    async def _run(self, fn: Callable[..., T], *args) -> T:
        """Run a synchronous query function in a worker thread under the lock."""
        def locked() -> T:
            with self._lock:
                return fn(*args)

        try:
            return await asyncio.to_thread(locked)
        except duckdb.Error as e:
            logger.error("[Store] %s failed: %s", getattr(fn, "__name__", "query"), e)
            raise StoreUnavailable(f"Message store error: {e}") from e

    def _fetch_message(self, message_id: str) -> Optional[StoredMessage]:
        row = self._connection().execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages m {_MESSAGE_JOINS} WHERE m.id = ?",
            [message_id],
        ).fetchone()
        return _row_to_message(row) if row else None

    def _check_paging(self, page: int, page_size: int) -> None:
        if page < 1:
            raise ValidationError("Page must be a positive integer")
        if page_size < 1 or page_size > self.max_page_size:
            raise ValidationError(f"Limit must be between 1 and {self.max_page_size}")

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    async def create(self, message: MessageCreate) -> StoredMessage:
        """Insert a validated message and return it with display data.

        Raises:
            StoreUnavailable: If the database rejects the write.
        """
        return await self._run(self._create, message)

    def _create(self, message: MessageCreate) -> StoredMessage:
        conn = self._connection()
        message_id = uuid.uuid4().hex
        attachment = (
            json.dumps(message.attachment.model_dump(exclude_none=True))
            if message.attachment else None
        )
        conn.execute(
            """
            INSERT INTO messages
              (id, sender, receiver, content, message_type, attachment,
               conversation_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                message_id,
                message.sender,
                message.receiver,
                message.content,
                message.messageType.value,
                attachment,
                message.conversation_id,
                _utcnow(),
            ],
        )
        stored = self._fetch_message(message_id)
        logger.info(
            "[Store] Message %s saved in %s (%s -> %s)",
            message_id, stored.conversationId, message.sender, message.receiver,
        )
        return stored

    async def get_message(self, message_id: str) -> Optional[StoredMessage]:
        return await self._run(self._fetch_message, message_id)

    async def get_page(
        self,
        requester: str,
        other: str,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> List[StoredMessage]:
        """Get one page of a conversation, oldest first.

        Messages the requester soft-deleted are excluded.

        Args:
            requester: Identity asking for the page.
            other: The other participant.
            page: 1-based page number.
            page_size: Messages per page (1..max_page_size).

        Returns:
            Messages ordered by creation time ascending.
        """
        conv_id = conversation_id(requester, other)
        self._check_paging(page, page_size)
        return await self._run(self._get_page, conv_id, requester, page, page_size)

    def _get_page(self, conv_id: str, requester: str, page: int, page_size: int) -> List[StoredMessage]:
        rows = self._connection().execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages m {_MESSAGE_JOINS}
            WHERE m.conversation_id = ? AND {_NOT_HIDDEN_BY}
            ORDER BY m.created_at ASC, m.seq ASC
            LIMIT ? OFFSET ?
            """,
            [conv_id, requester, page_size, (page - 1) * page_size],
        ).fetchall()
        return [_row_to_message(row) for row in rows]

    async def get_recent(
        self, requester: str, other: str, limit: int = DEFAULT_PAGE_SIZE
    ) -> List[StoredMessage]:
        """Get the newest messages of a conversation, newest first."""
        conv_id = conversation_id(requester, other)
        self._check_paging(1, limit)
        return await self._run(self._get_recent, conv_id, requester, limit)

    def _get_recent(self, conv_id: str, requester: str, limit: int) -> List[StoredMessage]:
        rows = self._connection().execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages m {_MESSAGE_JOINS}
            WHERE m.conversation_id = ? AND {_NOT_HIDDEN_BY}
            ORDER BY m.created_at DESC, m.seq DESC
            LIMIT ?
            """,
            [conv_id, requester, limit],
        ).fetchall()
        return [_row_to_message(row) for row in rows]

    async def list_conversations_for(self, identity: str) -> List[ConversationSummary]:
        """One summary per conversation the identity takes part in.

        Each summary holds the most recent visible message and the number of
        unread messages addressed to ``identity``. Sorted by most recent
        message, newest first.
        """
        if not is_valid_identity(identity):
            raise ValidationError(f"Invalid user ID: {identity!r}")
        return await self._run(self._list_conversations, identity)

    def _list_conversations(self, identity: str) -> List[ConversationSummary]:
        rows = self._connection().execute(
            f"""
            WITH ranked AS (
                SELECT
                    m.id,
                    row_number() OVER (
                        PARTITION BY m.conversation_id
                        ORDER BY m.created_at DESC, m.seq DESC
                    ) AS rn,
                    sum(CASE WHEN m.receiver = ? AND NOT m.is_read THEN 1 ELSE 0 END)
                        OVER (PARTITION BY m.conversation_id) AS unread_count
                FROM messages m
                WHERE (m.sender = ? OR m.receiver = ?) AND {_NOT_HIDDEN_BY}
            )
            SELECT {_MESSAGE_COLUMNS}, r.unread_count
            FROM ranked r
            JOIN messages m ON m.id = r.id
            {_MESSAGE_JOINS}
            WHERE r.rn = 1
            ORDER BY m.created_at DESC, m.seq DESC
            """,
            [identity, identity, identity, identity],
        ).fetchall()
        return [
            ConversationSummary(
                conversationId=row[14],
                lastMessage=_row_to_message(row),
                unreadCount=int(row[16] or 0),
            )
            for row in rows
        ]

    async def mark_read(self, conv_id: str, reader: str) -> int:
        """Mark every unread message addressed to ``reader`` in a conversation.

        Idempotent: a second call changes nothing and returns 0.

        Returns:
            Number of messages that changed state.
        """
        return await self._run(self._mark_read, conv_id, reader)

    def _mark_read(self, conv_id: str, reader: str) -> int:
        conn = self._connection()
        (pending,) = conn.execute(
            """
            SELECT count(*) FROM messages
            WHERE conversation_id = ? AND receiver = ? AND NOT is_read
            """,
            [conv_id, reader],
        ).fetchone()
        if pending:
            conn.execute(
                """
                UPDATE messages SET is_read = TRUE, read_at = ?
                WHERE conversation_id = ? AND receiver = ? AND NOT is_read
                """,
                [_utcnow(), conv_id, reader],
            )
            logger.info("[Store] %d message(s) in %s marked read by %s", pending, conv_id, reader)
        return int(pending)

    async def unread_count(self, identity: str) -> int:
        """Count unread messages addressed to ``identity`` and not hidden by it."""
        return await self._run(self._unread_count, identity)

    def _unread_count(self, identity: str) -> int:
        (count,) = self._connection().execute(
            f"""
            SELECT count(*) FROM messages m
            WHERE m.receiver = ? AND NOT m.is_read AND {_NOT_HIDDEN_BY}
            """,
            [identity, identity],
        ).fetchone()
        return int(count)

    async def soft_delete(self, message_id: str, actor: str) -> StoredMessage:
        """Hide a message from ``actor``'s view.

        Once both participants have hidden it the message is flagged
        ``isDeleted`` so an external reaper can purge it. Nothing is
        physically removed here.

        Raises:
            NotFoundError: If the message does not exist or ``actor`` is not
                one of its participants.
        """
        return await self._run(self._soft_delete, message_id, actor)

    def _soft_delete(self, message_id: str, actor: str) -> StoredMessage:
        conn = self._connection()
        row = conn.execute(
            "SELECT sender, receiver FROM messages WHERE id = ?", [message_id]
        ).fetchone()
        if row is None or actor not in row:
            raise NotFoundError("Message not found")

        already = conn.execute(
            "SELECT 1 FROM message_deletions WHERE message_id = ? AND user_id = ?",
            [message_id, actor],
        ).fetchone()
        if not already:
            conn.execute(
                "INSERT INTO message_deletions (message_id, user_id, deleted_at) VALUES (?, ?, ?)",
                [message_id, actor, _utcnow()],
            )

        sender, receiver = row
        (hidden_by,) = conn.execute(
            """
            SELECT count(DISTINCT user_id) FROM message_deletions
            WHERE message_id = ? AND user_id IN (?, ?)
            """,
            [message_id, sender, receiver],
        ).fetchone()
        if hidden_by >= 2:
            conn.execute("UPDATE messages SET is_deleted = TRUE WHERE id = ?", [message_id])
            logger.info("[Store] Message %s hidden by both participants; eligible for purge", message_id)
        return self._fetch_message(message_id)

    async def purgeable_ids(self) -> List[str]:
        """Ids of messages both participants deleted (for an external reaper)."""
        return await self._run(self._purgeable_ids)

    def _purgeable_ids(self) -> List[str]:
        rows = self._connection().execute(
            "SELECT id FROM messages WHERE is_deleted ORDER BY seq"
        ).fetchall()
        return [row[0] for row in rows]

    async def search(
        self, identity: str, query: str, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> List[StoredMessage]:
        """Case-insensitive substring search over the identity's messages."""
        if not query or not query.strip():
            raise ValidationError("Search query is required")
        self._check_paging(1, limit)
        return await self._run(self._search, identity, query.strip(), limit)

    def _search(self, identity: str, query: str, limit: int) -> List[StoredMessage]:
        rows = self._connection().execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages m {_MESSAGE_JOINS}
            WHERE (m.sender = ? OR m.receiver = ?)
              AND contains(lower(m.content), lower(?))
              AND {_NOT_HIDDEN_BY}
            ORDER BY m.created_at DESC, m.seq DESC
            LIMIT ?
            """,
            [identity, identity, query, identity, limit],
        ).fetchall()
        return [_row_to_message(row) for row in rows]

    # -----------------------------------------------------------------------
    # Display data
    # -----------------------------------------------------------------------

    async def upsert_user(
        self,
        user_id: str,
        name: Optional[str],
        profile_picture: Optional[str] = None,
        email: Optional[str] = None,
    ) -> UserSummary:
        if not is_valid_identity(user_id):
            raise ValidationError(f"Invalid user ID: {user_id!r}")
        return await self._run(self._upsert_user, user_id, name, profile_picture, email)

    def _upsert_user(
        self, user_id: str, name: Optional[str], profile_picture: Optional[str], email: Optional[str]
    ) -> UserSummary:
        conn = self._connection()
        conn.execute("DELETE FROM users WHERE id = ?", [user_id])
        conn.execute(
            "INSERT INTO users (id, name, profile_picture, email) VALUES (?, ?, ?, ?)",
            [user_id, name, profile_picture, email],
        )
        return UserSummary(id=user_id, name=name, profilePicture=profile_picture)

    async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, UserSummary]:
        """Display data for each id; unknown ids get an empty summary."""
        return await self._run(self._get_profiles, list(user_ids))

    def _get_profiles(self, user_ids: List[str]) -> Dict[str, UserSummary]:
        profiles = {uid: UserSummary(id=uid) for uid in user_ids}
        if not user_ids:
            return profiles
        placeholders = ", ".join("?" for _ in user_ids)
        rows = self._connection().execute(
            f"SELECT id, name, profile_picture FROM users WHERE id IN ({placeholders})",
            user_ids,
        ).fetchall()
        for uid, name, picture in rows:
            profiles[uid] = UserSummary(id=uid, name=name, profilePicture=picture)
        return profiles

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
