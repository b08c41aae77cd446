"""
Tests for per-user usage quota.
"""

import pytest
from datetime import datetime, timedelta, timezone

from teachback.safety.quota import (
    SOFT_CAP_APPROACHING,
    SOFT_CAP_EXCEEDED,
    UsageQuota,
    next_day_reset,
    next_month_reset,
)
from teachback.store.models import SubscriptionTier
from teachback.store.queries import UserQueries


@pytest.fixture
def quota(clock):
    return UsageQuota(
        free_daily_limit=5,
        free_monthly_limit=8,
        pro_monthly_soft_limit=10,
        warning_ratio=0.8,
        clock=clock,
    )


def _use(store, quota, user_id, times):
    with store.transaction() as conn:
        for _ in range(times):
            quota.record_usage(conn, user_id)


def test_unknown_user_is_free_and_allowed(store, quota):
    with store.transaction() as conn:
        decision = quota.check_usage(conn, "new-user")
        assert UserQueries.get(conn, "new-user") is None

    assert decision.allowed is True
    assert decision.tier == SubscriptionTier.FREE
    assert decision.remaining == 5


def test_record_usage_creates_user(store, quota):
    _use(store, quota, "u1", 1)
    with store.transaction() as conn:
        account = UserQueries.get(conn, "u1")

    assert account.tier == SubscriptionTier.FREE
    assert account.loops_used_today == 1
    assert account.loops_used_this_month == 1
    assert account.usage_day == "2026-03-10"
    assert account.usage_month == "2026-03"


def test_daily_limit_denies_until_midnight(store, quota, clock):
    _use(store, quota, "u1", 5)
    with store.transaction() as conn:
        decision = quota.check_usage(conn, "u1")

    assert decision.allowed is False
    assert decision.remaining == 0
    assert decision.limit == 5
    assert decision.reset_at == datetime(2026, 3, 11, tzinfo=timezone.utc)

    clock.now = clock.now + timedelta(days=1)
    with store.transaction() as conn:
        assert quota.check_usage(conn, "u1").allowed is True


def test_monthly_limit_wins_over_daily(store, quota, clock):
    _use(store, quota, "u1", 5)
    clock.now = clock.now + timedelta(days=1)
    _use(store, quota, "u1", 3)

    with store.transaction() as conn:
        decision = quota.check_usage(conn, "u1")

    assert decision.allowed is False
    assert decision.limit == 8
    assert decision.reset_at == datetime(2026, 4, 1, tzinfo=timezone.utc)


def test_remaining_is_smaller_of_day_and_month(store, quota, clock):
    _use(store, quota, "u1", 4)
    clock.now = clock.now + timedelta(days=1)
    _use(store, quota, "u1", 2)

    with store.transaction() as conn:
        decision = quota.check_usage(conn, "u1")

    # 3 left today, 2 left this month
    assert decision.allowed is True
    assert decision.remaining == 2


def test_month_rollover_resets_counters(store, quota, clock):
    _use(store, quota, "u1", 5)
    clock.now = datetime(2026, 4, 2, 9, 0, tzinfo=timezone.utc)
    _use(store, quota, "u1", 1)

    with store.transaction() as conn:
        account = UserQueries.get(conn, "u1")

    assert account.loops_used_today == 1
    assert account.loops_used_this_month == 1
    assert account.usage_month == "2026-04"


def test_pro_is_never_denied_but_warned(store, quota):
    with store.transaction() as conn:
        UserQueries.set_tier(conn, "pro-user", SubscriptionTier.PRO)

    _use(store, quota, "pro-user", 7)
    with store.transaction() as conn:
        assert quota.check_usage(conn, "pro-user").warning is None

    _use(store, quota, "pro-user", 1)
    with store.transaction() as conn:
        approaching = quota.check_usage(conn, "pro-user")
    assert approaching.allowed is True
    assert approaching.warning == SOFT_CAP_APPROACHING

    _use(store, quota, "pro-user", 4)
    with store.transaction() as conn:
        exceeded = quota.check_usage(conn, "pro-user")
    assert exceeded.allowed is True
    assert exceeded.warning == SOFT_CAP_EXCEEDED


def test_reset_boundaries():
    late = datetime(2026, 12, 31, 23, 59, tzinfo=timezone.utc)
    assert next_day_reset(late) == datetime(2027, 1, 1, tzinfo=timezone.utc)
    assert next_month_reset(late) == datetime(2027, 1, 1, tzinfo=timezone.utc)
    assert next_month_reset(datetime(2026, 3, 10, tzinfo=timezone.utc)) == datetime(2026, 4, 1, tzinfo=timezone.utc)
