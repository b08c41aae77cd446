"""
Per-user usage quota for attempt submission.

Free tier: hard daily and monthly limits. Pro tier: unlimited, with a soft-cap
warning as monthly usage approaches the soft limit.
"""

import sqlite3
from dataclasses import dataclass
from typing import Optional, Tuple
from datetime import datetime, timedelta

from teachback.store.models import SubscriptionTier, UserAccount
from teachback.store.queries import UserQueries
from teachback.store.database import utc_now
from teachback.shared.config import settings
from teachback.shared.logging import get_logger

logger = get_logger(__name__)

SOFT_CAP_APPROACHING = "soft_cap_approaching"
SOFT_CAP_EXCEEDED = "soft_cap_exceeded"


@dataclass
class QuotaDecision:
    """Result of a quota check."""
    allowed: bool
    remaining: Optional[int]
    reset_at: datetime
    tier: SubscriptionTier
    limit: Optional[int] = None
    warning: Optional[str] = None


def _day_key(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def _month_key(now: datetime) -> str:
    return now.strftime("%Y-%m")


def next_day_reset(now: datetime) -> datetime:
    """Next UTC midnight."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1)


def next_month_reset(now: datetime) -> datetime:
    """First instant of the next UTC month."""
    first = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


class UsageQuota:
    """Checks and records usage against tier limits."""

    def __init__(
        self,
        free_daily_limit: Optional[int] = None,
        free_monthly_limit: Optional[int] = None,
        pro_monthly_soft_limit: Optional[int] = None,
        warning_ratio: Optional[float] = None,
        clock=None
    ):
        quota_config = settings.quota
        self.free_daily_limit = free_daily_limit or quota_config.free_daily_limit
        self.free_monthly_limit = free_monthly_limit or quota_config.free_monthly_limit
        self.pro_monthly_soft_limit = pro_monthly_soft_limit or quota_config.pro_monthly_soft_limit
        self.warning_ratio = warning_ratio or quota_config.pro_soft_cap_warning_ratio
        self.clock = clock or utc_now

    def _current_usage(self, account: Optional[UserAccount], now: datetime) -> Tuple[int, int]:
        """(used today, used this month) with stale periods rolled over to zero."""
        if account is None:
            return 0, 0
        today = account.loops_used_today if account.usage_day == _day_key(now) else 0
        month = account.loops_used_this_month if account.usage_month == _month_key(now) else 0
        return today, month

    def check_usage(self, conn: sqlite3.Connection, user_id: str) -> QuotaDecision:
        """Decide whether the user may submit another attempt. Read-only."""
        now = self.clock()
        account = UserQueries.get(conn, user_id)
        tier = account.tier if account else SubscriptionTier.FREE
        used_today, used_month = self._current_usage(account, now)

        if tier == SubscriptionTier.PRO:
            warning = None
            if used_month >= self.pro_monthly_soft_limit:
                warning = SOFT_CAP_EXCEEDED
            elif used_month >= self.pro_monthly_soft_limit * self.warning_ratio:
                warning = SOFT_CAP_APPROACHING
            return QuotaDecision(
                allowed=True,
                remaining=None,
                reset_at=next_month_reset(now),
                tier=tier,
                limit=self.pro_monthly_soft_limit,
                warning=warning
            )

        daily_remaining = max(0, self.free_daily_limit - used_today)
        monthly_remaining = max(0, self.free_monthly_limit - used_month)

        if monthly_remaining == 0:
            return QuotaDecision(
                allowed=False, remaining=0, reset_at=next_month_reset(now),
                tier=tier, limit=self.free_monthly_limit
            )
        if daily_remaining == 0:
            return QuotaDecision(
                allowed=False, remaining=0, reset_at=next_day_reset(now),
                tier=tier, limit=self.free_daily_limit
            )

        if daily_remaining <= monthly_remaining:
            return QuotaDecision(
                allowed=True, remaining=daily_remaining, reset_at=next_day_reset(now),
                tier=tier, limit=self.free_daily_limit
            )
        return QuotaDecision(
            allowed=True, remaining=monthly_remaining, reset_at=next_month_reset(now),
            tier=tier, limit=self.free_monthly_limit
        )

    def record_usage(self, conn: sqlite3.Connection, user_id: str):
        """Count one attempt against the user's day and month, rolling periods over."""
        now = self.clock()
        account = UserQueries.ensure(conn, user_id)
        used_today, used_month = self._current_usage(account, now)
        UserQueries.save_usage(
            conn, user_id,
            loops_used_today=used_today + 1,
            usage_day=_day_key(now),
            loops_used_this_month=used_month + 1,
            usage_month=_month_key(now)
        )
        logger.debug("Usage recorded", extra={"user_id": user_id, "action": "usage_record"})
