from datetime import timedelta

from freezegun import freeze_time
from paynotify.services.rate_limit import RateLimiter


@freeze_time("2026-01-01 12:00:00")
def test_limit_calls_allowed_then_blocked():
    limiter = RateLimiter()

    remaining = []
    for _ in range(3):
        result = limiter.check("k", 3, 1000)
        assert result.allowed
        remaining.append(result.remaining)
    assert remaining == [2, 1, 0]

    blocked = limiter.check("k", 3, 1000)
    assert not blocked.allowed
    assert 0 < blocked.retry_after_ms <= 1000


def test_retry_after_is_time_left_in_window():
    with freeze_time("2026-01-01 12:00:00") as frozen:
        limiter = RateLimiter()
        limiter.check("k", 1, 1000)
        frozen.tick(timedelta(milliseconds=250))

        result = limiter.check("k", 1, 1000)

    assert not result.allowed
    assert result.retry_after_ms == 750


def test_new_window_after_elapsed():
    with freeze_time("2026-01-01 12:00:00") as frozen:
        limiter = RateLimiter()
        for _ in range(3):
            limiter.check("k", 3, 1000)
        assert not limiter.check("k", 3, 1000).allowed

        frozen.tick(timedelta(seconds=1, milliseconds=1))
        result = limiter.check("k", 3, 1000)

    assert result.allowed
    assert result.remaining == 2


def test_window_measured_in_milliseconds_setting():
    with freeze_time("2026-01-01 12:00:00") as frozen:
        limiter = RateLimiter()
        assert limiter.check("payment_status:1.1.1.1", 1, 30_000).allowed
        frozen.tick(timedelta(seconds=10))

        result = limiter.check("payment_status:1.1.1.1", 1, 30_000)

    assert not result.allowed
    assert result.retry_after_ms == 20_000


@freeze_time("2026-01-01 12:00:00")
def test_keys_are_independent():
    limiter = RateLimiter()
    assert limiter.check("payment_status:1.1.1.1", 1, 1000).allowed
    assert not limiter.check("payment_status:1.1.1.1", 1, 1000).allowed
    assert limiter.check("payment_status:2.2.2.2", 1, 1000).allowed


@freeze_time("2026-01-01 12:00:00")
def test_instances_do_not_share_state():
    first = RateLimiter()
    second = RateLimiter()
    assert first.check("k", 1, 1000).allowed
    assert not first.check("k", 1, 1000).allowed
    assert second.check("k", 1, 1000).allowed


@freeze_time("2026-01-01 12:00:00")
def test_tracked_keys_bounded_within_one_window():
    limiter = RateLimiter(max_keys=3)

    for i in range(10):
        assert limiter.check(f"payment_webhook:10.0.0.{i}", 1, 60_000).allowed

    assert limiter.tracked_keys == 3


@freeze_time("2026-01-01 12:00:00")
def test_least_recently_seen_key_is_evicted_first():
    limiter = RateLimiter(max_keys=2)
    limiter.check("a", 1, 60_000)
    limiter.check("b", 1, 60_000)
    assert not limiter.check("a", 1, 60_000).allowed

    limiter.check("c", 1, 60_000)

    # "b" was the oldest and lost its window; "a" was seen more recently
    assert not limiter.check("a", 1, 60_000).allowed
    assert limiter.check("b", 1, 60_000).allowed
    assert limiter.tracked_keys == 2


@freeze_time("2026-01-01 12:00:00")
def test_reset_clears_counters():
    limiter = RateLimiter()
    limiter.check("k", 1, 1000)
    limiter.reset()
    assert limiter.check("k", 1, 1000).allowed
    assert limiter.tracked_keys == 1
