from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from app.services.rate_limit_service import check_rate_limit


async def test_allows_up_to_the_limit(fake_redis):
    decisions = [await check_rate_limit("234800", limit=3, window_seconds=60) for _ in range(3)]

    assert all(d.allowed for d in decisions)
    assert [d.count for d in decisions] == [1, 2, 3]
    assert 0 < await fake_redis.ttl("ratelimit:234800") <= 60


async def test_warns_once_per_window(fake_redis):
    for _ in range(2):
        await check_rate_limit("234800", limit=2, window_seconds=60)

    first = await check_rate_limit("234800", limit=2, window_seconds=60)
    second = await check_rate_limit("234800", limit=2, window_seconds=60)

    assert not first.allowed and first.should_warn
    assert not second.allowed and not second.should_warn


async def test_users_are_counted_separately(fake_redis):
    await check_rate_limit("a", limit=1, window_seconds=60)

    assert not (await check_rate_limit("a", limit=1, window_seconds=60)).allowed
    assert (await check_rate_limit("b", limit=1, window_seconds=60)).allowed


async def test_window_reset_allows_again(fake_redis):
    await check_rate_limit("234800", limit=1, window_seconds=60)
    assert not (await check_rate_limit("234800", limit=1, window_seconds=60)).allowed

    await fake_redis.delete("ratelimit:234800", "ratelimit:234800:warned")

    decision = await check_rate_limit("234800", limit=1, window_seconds=60)
    assert decision.allowed and decision.count == 1


async def test_redis_outage_fails_open():
    broken = AsyncMock()
    broken.incr.side_effect = RedisConnectionError("connection refused")

    decision = await check_rate_limit("234800", limit=1, window_seconds=60, client=broken)

    assert decision.allowed
    assert not decision.should_warn
