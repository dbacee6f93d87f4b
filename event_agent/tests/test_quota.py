from datetime import datetime, timezone

import pytest

from event_agent.infrastructure.quota.daily_quota import DailyQuotaTracker, next_reset


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def test_daily_limit_and_retry_after():
    clock = Clock(datetime(2030, 3, 10, 15, 30, tzinfo=timezone.utc))
    quota = DailyQuotaTracker(daily_limit=2, clock=clock)

    assert quota.check_quota("u1").remaining == 2
    quota.increment_usage("u1")
    quota.increment_usage("u1")

    status = quota.check_quota("u1")
    assert status.allowed is False
    assert status.remaining == 0
    assert status.limit == 2
    assert status.retry_after == datetime(2030, 3, 11, tzinfo=timezone.utc)
    assert status.reason == "Daily limit reached"
    # 其他用户不受影响
    assert quota.check_quota("u2").allowed is True


def test_usage_resets_at_midnight_utc():
    clock = Clock(datetime(2030, 3, 10, 23, 59, tzinfo=timezone.utc))
    quota = DailyQuotaTracker(daily_limit=1, clock=clock)
    quota.increment_usage("u1")
    assert quota.check_quota("u1").allowed is False

    clock.now = datetime(2030, 3, 11, 0, 0, 1, tzinfo=timezone.utc)
    status = quota.check_quota("u1")
    assert status.allowed is True
    assert status.remaining == 1


def test_custom_and_unlimited_users():
    quota = DailyQuotaTracker(daily_limit=5, unlimited_users={"admin"})
    quota.set_daily_limit("u1", 0)
    assert quota.check_quota("u1").allowed is False

    for _ in range(10):
        quota.increment_usage("admin")
    assert quota.check_quota("admin").allowed is True

    with pytest.raises(ValueError):
        quota.set_daily_limit("u1", -1)


def test_next_reset_is_next_utc_midnight():
    assert next_reset(datetime(2030, 12, 31, 8, 0, tzinfo=timezone.utc)) == datetime(2031, 1, 1, tzinfo=timezone.utc)
