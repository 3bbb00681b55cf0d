"""Recent-message cache (Redis)."""
from .recent import RecentMessageCache, cache_key

__all__ = ["RecentMessageCache", "cache_key"]
