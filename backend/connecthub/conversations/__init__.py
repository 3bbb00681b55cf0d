"""Direct-message persistence: schemas and the DuckDB conversation store."""
from .schemas import (
    ConversationSummary,
    MessageCreate,
    MessageType,
    StoredMessage,
    UserSummary,
    conversation_id,
    new_message,
)
from .store import ConversationStore

__all__ = [
    "ConversationStore",
    "ConversationSummary",
    "MessageCreate",
    "MessageType",
    "StoredMessage",
    "UserSummary",
    "conversation_id",
    "new_message",
]
