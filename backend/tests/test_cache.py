"""Tests for the Redis recent-message cache."""
import json
from types import SimpleNamespace

import pytest

from connecthub.cache.recent import ONLINE_USERS_KEY, RecentMessageCache, cache_key
from connecthub.config import AppSettings
from connecthub.errors import CacheUnavailable


def _msg(i):
    return {"_id": f"m{i}", "content": f"message {i}"}


def test_cache_key():
    assert cache_key("alice_bob") == "messages:alice_bob"


@pytest.mark.asyncio
async def test_push_and_get_most_recent_first(cache, fake_redis):
    for i in range(3):
        await cache.push("alice_bob", _msg(i))

    messages = await cache.get("alice_bob")
    assert [m["_id"] for m in messages] == ["m2", "m1", "m0"]
    assert fake_redis.ttls["messages:alice_bob"] == 3600
    assert json.loads(fake_redis.lists["messages:alice_bob"][0]) == _msg(2)


@pytest.mark.asyncio
async def test_list_is_capped(fake_redis):
    cache = RecentMessageCache(fake_redis, max_messages=50)
    for i in range(51):
        await cache.push("alice_bob", _msg(i))

    messages = await cache.get("alice_bob")
    assert len(messages) == 50
    assert messages[0]["_id"] == "m50"
    assert messages[-1]["_id"] == "m1"


@pytest.mark.asyncio
async def test_miss_returns_empty_list(cache):
    assert await cache.get("nobody_here") == []


@pytest.mark.asyncio
async def test_undecodable_entries_are_skipped(cache, fake_redis):
    fake_redis.lists["messages:alice_bob"] = ["{not json", json.dumps(_msg(1))]
    assert await cache.get("alice_bob") == [_msg(1)]


@pytest.mark.asyncio
async def test_invalidate(cache):
    await cache.push("alice_bob", _msg(1))
    await cache.invalidate("alice_bob")
    assert await cache.get("alice_bob") == []


@pytest.mark.asyncio
async def test_invalidate_pattern(cache):
    await cache.push("alice_bob", _msg(1))
    await cache.push("alice_carol", _msg(2))
    await cache.push("bob_carol", _msg(3))

    deleted = await cache.invalidate_pattern("messages:alice_*")

    assert deleted == 2
    assert await cache.get("alice_bob") == []
    assert await cache.get("bob_carol") == [_msg(3)]


@pytest.mark.asyncio
async def test_presence_mirror(cache, fake_redis):
    await cache.mark_online("alice")
    await cache.mark_online("bob")
    await cache.mark_offline("alice")
    assert fake_redis.sets[ONLINE_USERS_KEY] == {"bob"}


@pytest.mark.asyncio
@pytest.mark.parametrize("call", [
    lambda c: c.push("alice_bob", _msg(1)),
    lambda c: c.get("alice_bob"),
    lambda c: c.invalidate("alice_bob"),
    lambda c: c.invalidate_pattern("messages:*"),
    lambda c: c.mark_online("alice"),
    lambda c: c.mark_offline("alice"),
])
async def test_redis_errors_become_cache_unavailable(cache, fake_redis, call):
    fake_redis.fail = True
    with pytest.raises(CacheUnavailable):
        await call(cache)


@pytest.mark.asyncio
async def test_disabled_cache_is_a_no_op():
    cache = RecentMessageCache(None)
    assert not cache.enabled
    await cache.push("alice_bob", _msg(1))
    await cache.mark_online("alice")
    await cache.invalidate("alice_bob")
    assert await cache.get("alice_bob") == []
    assert await cache.invalidate_pattern("*") == 0
    await cache.close()


@pytest.mark.asyncio
async def test_close(cache, fake_redis):
    await cache.close()
    assert fake_redis.closed
    assert not cache.enabled


def test_from_settings_disabled():
    settings = AppSettings(cache={"enabled": False, "max_messages": 10})
    cache = RecentMessageCache.from_settings(settings)
    assert not cache.enabled
    assert cache.max_messages == 10


def test_from_settings_builds_client(monkeypatch):
    calls = []

    def fake_from_url(url, **kwargs):
        calls.append((url, kwargs))
        return SimpleNamespace()

    monkeypatch.setattr("connecthub.cache.recent.aioredis.from_url", fake_from_url)
    settings = AppSettings(
        cache={"url": "redis://cache:6379/2", "ttl_seconds": 60},
        secrets={"redis": {"password": "s3cret"}},
    )
    cache = RecentMessageCache.from_settings(settings)

    assert cache.enabled
    assert cache.ttl_seconds == 60
    assert calls == [("redis://cache:6379/2", {"password": "s3cret", "decode_responses": True})]
