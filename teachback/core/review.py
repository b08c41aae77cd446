"""
Spaced-repetition review scheduling, one schedule per (user, loop).
"""

import sqlite3
import logging
from typing import Optional, List
from datetime import timedelta

from teachback.store.models import ReviewSchedule
from teachback.store.queries import ReviewQueries
from teachback.store.database import utc_now
from teachback.shared.config import settings
from teachback.shared.exceptions import NotFoundError
from teachback.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


class ReviewScheduler:
    """
    Creates and advances review schedules.

    Interval policy after each quick review:
    - score >= review_score_threshold: interval * growth_factor, capped at max_interval_days
    - score < review_reset_threshold: interval resets to the initial interval
    - otherwise: interval unchanged
    """

    def __init__(
        self,
        initial_interval_days: Optional[int] = None,
        growth_factor: Optional[int] = None,
        max_interval_days: Optional[int] = None,
        success_threshold: Optional[int] = None,
        reset_threshold: Optional[int] = None,
        clock=None
    ):
        loop_config = settings.loop
        self.initial_interval_days = initial_interval_days or loop_config.initial_review_interval_days
        self.growth_factor = growth_factor or loop_config.review_growth_factor
        self.max_interval_days = max_interval_days or loop_config.max_review_interval_days
        self.success_threshold = success_threshold if success_threshold is not None else loop_config.review_score_threshold
        self.reset_threshold = reset_threshold if reset_threshold is not None else loop_config.review_reset_threshold
        self.clock = clock or utc_now

    def next_interval(self, current_interval: int, score: int) -> int:
        if score >= self.success_threshold:
            return min(current_interval * self.growth_factor, self.max_interval_days)
        if score < self.reset_threshold:
            return self.initial_interval_days
        return current_interval

    def create(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        loop_id: str,
        interval_days: Optional[int] = None
    ) -> ReviewSchedule:
        """Insert (or reset) the loop's schedule at now + interval_days."""
        interval_days = interval_days or self.initial_interval_days
        schedule = ReviewQueries.create(
            conn, user_id, loop_id,
            next_review_at=self.clock() + timedelta(days=interval_days),
            interval_days=interval_days
        )
        log_with_context(
            logger, logging.INFO, "Review scheduled",
            user_id=user_id, loop_id=loop_id, action="review_create", interval_days=interval_days
        )
        return schedule

    def complete_review(self, conn: sqlite3.Connection, schedule_id: str, score: int) -> ReviewSchedule:
        """
        Record a review result and push the next review out.

        Raises:
            NotFoundError if the schedule does not exist
        """
        schedule = ReviewQueries.get(conn, schedule_id)
        if schedule is None:
            raise NotFoundError(f"Review schedule {schedule_id} not found")

        interval = self.next_interval(schedule.interval_days, score)
        ReviewQueries.record_review(
            conn, schedule_id, score,
            interval_days=interval,
            next_review_at=self.clock() + timedelta(days=interval)
        )
        log_with_context(
            logger, logging.INFO, "Review completed",
            user_id=schedule.user_id, loop_id=schedule.loop_id, action="review_complete",
            score=score, interval_days=interval
        )
        return ReviewQueries.get(conn, schedule_id)

    def find_due(self, conn: sqlite3.Connection, user_id: str) -> List[ReviewSchedule]:
        return ReviewQueries.list_due(conn, user_id, self.clock())
