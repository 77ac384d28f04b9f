from unittest import mock

import pytest

from dnsforward.ratelimit import IPRateLimiter, RateLimiter


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_rate_limiter_allows_up_to_limit():
    clock = _Clock()
    with mock.patch("dnsforward.ratelimit.time.monotonic", new=clock):
        limiter = RateLimiter(2, 1.0)
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False


def test_rate_limiter_window_slides():
    clock = _Clock()
    with mock.patch("dnsforward.ratelimit.time.monotonic", new=clock):
        limiter = RateLimiter(2, 1.0)
        limiter.try_acquire()
        clock.now += 0.5
        limiter.try_acquire()
        clock.now += 0.6
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False
        clock.now += 0.5
        assert limiter.try_acquire() is True


def test_rate_limiter_rejects_bad_limit():
    with pytest.raises(ValueError):
        RateLimiter(0, 1.0)


def test_disabled_never_limits():
    rl = IPRateLimiter(0, [], 24, 64)
    assert not any(rl.is_ratelimited("192.0.2.1") for _ in range(10))


def test_same_subnet_shares_bucket():
    rl = IPRateLimiter(1, [], 24, 64)
    assert rl.is_ratelimited("192.0.2.1") is False
    assert rl.is_ratelimited("192.0.2.2") is True
    assert rl.is_ratelimited("198.51.100.1") is False


def test_ipv6_subnet():
    rl = IPRateLimiter(1, [], 24, 64)
    assert rl.is_ratelimited("2001:db8::1") is False
    assert rl.is_ratelimited("2001:db8::ffff") is True
    assert rl.is_ratelimited("2001:db8:0:1::1") is False


def test_mapped_address_uses_ipv4_bucket():
    rl = IPRateLimiter(1, [], 24, 64)
    assert rl.is_ratelimited("192.0.2.1") is False
    assert rl.is_ratelimited("::ffff:192.0.2.7") is True


def test_whitelisted_never_limited():
    rl = IPRateLimiter(1, ["192.0.2.1"], 24, 64)
    assert not any(rl.is_ratelimited("192.0.2.1") for _ in range(5))
    assert rl.is_ratelimited("192.0.2.2") is False
    assert rl.is_ratelimited("192.0.2.3") is True