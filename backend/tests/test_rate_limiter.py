"""In-memory rate limiter used for signing-link OTP submissions."""
import pytest
from datetime import datetime, timedelta, timezone

from utils.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_allows_up_to_limit_then_blocks():
    limiter = RateLimiter()
    for _ in range(3):
        allowed, msg = await limiter.check_rate_limit("k", max_attempts=3, window_minutes=15)
        assert allowed and msg is None
    allowed, msg = await limiter.check_rate_limit("k", max_attempts=3, window_minutes=15)
    assert not allowed
    assert msg.startswith("Too many attempts")


@pytest.mark.asyncio
async def test_keys_are_independent_and_resettable():
    limiter = RateLimiter()
    await limiter.check_rate_limit("a", max_attempts=1, window_minutes=15)
    assert (await limiter.check_rate_limit("a", max_attempts=1, window_minutes=15))[0] is False
    assert (await limiter.check_rate_limit("b", max_attempts=1, window_minutes=15))[0] is True
    limiter.reset("a")
    assert (await limiter.check_rate_limit("a", max_attempts=1, window_minutes=15))[0] is True


@pytest.mark.asyncio
async def test_idle_keys_are_dropped_after_window():
    limiter = RateLimiter()
    await limiter.check_rate_limit("sign_otp:a1b2c3d4e5f6", max_attempts=5, window_minutes=15)
    assert "sign_otp:a1b2c3d4e5f6" in limiter.attempts

    later = datetime.now(timezone.utc) + timedelta(minutes=16)
    limiter._prune("sign_otp:a1b2c3d4e5f6", later, timedelta(minutes=15))
    assert limiter.attempts == {}


@pytest.mark.asyncio
async def test_expired_attempts_free_the_window():
    limiter = RateLimiter()
    await limiter.check_rate_limit("k", max_attempts=1, window_minutes=15)
    limiter.attempts["k"][0] -= timedelta(minutes=20)
    allowed, _ = await limiter.check_rate_limit("k", max_attempts=1, window_minutes=15)
    assert allowed is True
    assert len(limiter.attempts["k"]) == 1
