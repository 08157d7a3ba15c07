"""
Tests for the listing cache: generation-checked writes and invalidation.

Redis is replaced by a mocked client; the conditional write itself runs as a
Lua script on the server, so these tests pin down what is sent to it.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from booking_ledger.services import booking_service
from booking_ledger.services.cache_service import GENERATION_KEY, LISTING_PREFIX, ListingCache
from conftest import booking_payload


def _scan(keys):
    async def scan_iter(**kwargs):
        for key in keys:
            yield key
    return scan_iter


@pytest.fixture
def redis_values():
    return {GENERATION_KEY: "4"}


@pytest.fixture
def mock_redis(redis_values):
    async def get(key):
        return redis_values.get(key)

    client = MagicMock()
    client.get = AsyncMock(side_effect=get)
    client.incr = AsyncMock()
    client.delete = AsyncMock()
    client.aclose = AsyncMock()
    client.scan_iter = _scan([f"{LISTING_PREFIX}all"])
    script = AsyncMock(return_value=1)
    client.register_script.return_value = script
    return client, script


@pytest.fixture
def cache(settings, mock_redis):
    listing_cache = ListingCache(settings.model_copy(update={"REDIS_ENABLED": True}))
    listing_cache._client = mock_redis[0]
    return listing_cache


@pytest.mark.asyncio
async def test_generation_defaults_to_zero(cache, redis_values):
    assert await cache.generation() == 4
    redis_values.clear()
    assert await cache.generation() == 0


@pytest.mark.asyncio
async def test_set_listing_sends_expected_generation(cache, mock_redis, settings):
    _, script = mock_redis

    assert await cache.set_listing({"items": [], "total": 0}, generation=4) is True

    keys = script.await_args.kwargs["keys"]
    args = script.await_args.kwargs["args"]
    assert keys == [GENERATION_KEY, f"{LISTING_PREFIX}all"]
    assert args[:2] == [4, settings.REDIS_CACHE_TTL]


@pytest.mark.asyncio
async def test_stale_generation_is_not_stored(cache, mock_redis):
    _, script = mock_redis
    script.return_value = 0

    assert await cache.set_listing({"items": []}, generation=3) is False


@pytest.mark.asyncio
async def test_unknown_generation_skips_the_write(cache, mock_redis):
    _, script = mock_redis

    assert await cache.set_listing({"items": []}, generation=None) is False
    script.assert_not_awaited()


@pytest.mark.asyncio
async def test_invalidate_bumps_generation_then_drops_listings(cache, mock_redis):
    client, _ = mock_redis

    await cache.invalidate()

    client.incr.assert_awaited_once_with(GENERATION_KEY)
    client.delete.assert_awaited_once_with(f"{LISTING_PREFIX}all")


@pytest.mark.asyncio
async def test_listing_read_before_a_write_keeps_its_old_generation(ctx, cache, mock_redis, monkeypatch):
    """A create committed while the stores are being read must not be hidden by the cache."""
    client, script = mock_redis
    load_sources = ctx.repository.fetch_sources

    async def fetch_then_create():
        sources = await load_sources()
        created = await booking_service.create_booking(ctx, booking_payload())
        assert created.success
        return sources

    monkeypatch.setattr(ctx, "cache", cache)
    monkeypatch.setattr(ctx.repository, "fetch_sources", fetch_then_create)

    result = await booking_service.list_bookings(ctx)

    assert result.success
    assert result.data.total == 0
    client.incr.assert_awaited_once_with(GENERATION_KEY)
    assert script.await_args.kwargs["args"][0] == 4
