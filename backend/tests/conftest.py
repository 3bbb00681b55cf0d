"""Shared test fixtures and configuration for backend tests."""
import fnmatch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from connecthub.auth.tokens import TokenClaims, TokenVerifier
from connecthub.cache.recent import RecentMessageCache
from connecthub.chat.gateway import ChatGateway
from connecthub.conversations.store import ConversationStore
from connecthub.presence.registry import PresenceRegistry

ACCESS_SECRET = "test-access-secret"
REFRESH_SECRET = "test-refresh-secret"


class FakePipeline:
    """Queues commands and runs them on execute(), like a redis pipeline."""

    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def lpush(self, key, *values):
        self._commands.append(("lpush", key, values))

    def ltrim(self, key, start, end):
        self._commands.append(("ltrim", key, (start, end)))

    def expire(self, key, seconds):
        self._commands.append(("expire", key, (seconds,)))

    async def execute(self):
        self._redis._check()
        results = []
        for name, key, args in self._commands:
            results.append(await getattr(self._redis, name)(key, *args))
        self._commands = []
        return results


class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio.Redis the cache uses.

    Set ``fail = True`` to make every command raise a redis ConnectionError.
    """

    def __init__(self) -> None:
        self.lists = {}
        self.sets = {}
        self.ttls = {}
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def lpush(self, key, *values):
        self._check()
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def ltrim(self, key, start, end):
        self._check()
        if key in self.lists:
            self.lists[key] = self.lists[key][start:end + 1]
        return True

    async def expire(self, key, seconds):
        self._check()
        self.ttls[key] = seconds
        return True

    async def lrange(self, key, start, end):
        self._check()
        return list(self.lists.get(key, [])[start:end + 1])

    async def delete(self, *keys):
        self._check()
        deleted = 0
        for key in keys:
            if self.lists.pop(key, None) is not None:
                deleted += 1
            self.ttls.pop(key, None)
        return deleted

    async def scan_iter(self, match=None, count=None):
        self._check()
        for key in list(self.lists):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def sadd(self, key, *members):
        self._check()
        self.sets.setdefault(key, set()).update(members)
        return len(members)

    async def srem(self, key, *members):
        self._check()
        self.sets.setdefault(key, set()).difference_update(members)
        return len(members)

    async def aclose(self):
        self.closed = True


class FakeWebSocket:
    """Records frames sent by the gateway; can be told to fail on send."""

    def __init__(self, fail_send: bool = False) -> None:
        self.sent = []
        self.accepted = False
        self.closed_with = None
        self.fail_send = fail_send
        self.headers = {}

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail_send:
            raise RuntimeError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000):
        self.closed_with = code

    def events(self, name=None):
        """Sent frames (optionally only those of one event)."""
        return [f for f in self.sent if name is None or f["event"] == name]


@pytest.fixture
def verifier():
    return TokenVerifier(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)


@pytest.fixture
def make_token(verifier):
    """Return a helper that issues an access token for a user id."""
    def _make(user_id: str, role: str = "user") -> str:
        return verifier.issue_access(TokenClaims(userId=user_id, role=role))
    return _make


@pytest.fixture
def store():
    """Fresh in-memory conversation store."""
    store = ConversationStore(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return RecentMessageCache(fake_redis, max_messages=50, ttl_seconds=3600)


@pytest.fixture
def gateway(verifier, store, cache):
    """Gateway over in-memory services, without an auto-responder."""
    return ChatGateway(
        verifier=verifier,
        presence=PresenceRegistry(),
        store=store,
        cache=cache,
    )
