"""Auto-responder for synthetic accounts."""
from .replies import ReplyCategory, categorize, generate_reply
from .seed import load_directory, seed_directory
from .service import AutoResponder

__all__ = [
    "AutoResponder",
    "ReplyCategory",
    "categorize",
    "generate_reply",
    "load_directory",
    "seed_directory",
]
