"""
Tests for spaced-repetition review scheduling.
"""

import pytest
from datetime import timedelta

from teachback.core.review import ReviewScheduler
from teachback.store.models import LoopPhase, Precision, SourceType
from teachback.store.queries import LoopQueries
from teachback.shared.exceptions import NotFoundError

from conftest import SOURCE_TEXT


@pytest.fixture
def scheduler(clock):
    return ReviewScheduler(
        initial_interval_days=1,
        growth_factor=2,
        max_interval_days=30,
        success_threshold=80,
        reset_threshold=50,
        clock=clock,
    )


def _loop(conn, user_id="u1"):
    return LoopQueries.create(
        conn, user_id, SOURCE_TEXT, SourceType.ARTICLE, Precision.BALANCED, LoopPhase.SIMPLIFY_RESULTS
    )


def test_interval_backoff(scheduler):
    assert scheduler.next_interval(1, 80) == 2
    assert scheduler.next_interval(8, 95) == 16
    assert scheduler.next_interval(16, 90) == 30
    assert scheduler.next_interval(30, 100) == 30
    assert scheduler.next_interval(8, 65) == 8
    assert scheduler.next_interval(8, 49) == 1


def test_create_schedules_one_day_out(store, scheduler, clock):
    with store.transaction() as conn:
        loop = _loop(conn)
        schedule = scheduler.create(conn, "u1", loop.id)

    assert schedule.interval_days == 1
    assert schedule.next_review_at == clock() + timedelta(days=1)
    assert schedule.times_reviewed == 0


def test_recreating_keeps_one_schedule_per_loop(store, scheduler):
    with store.transaction() as conn:
        loop = _loop(conn)
        first = scheduler.create(conn, "u1", loop.id)
        second = scheduler.create(conn, "u1", loop.id, interval_days=4)
        count = conn.execute(
            "SELECT COUNT(*) FROM review_schedule WHERE loop_id = ?", (loop.id,)
        ).fetchone()[0]

    assert count == 1
    assert second.id == first.id
    assert second.interval_days == 4


def test_complete_review_grows_interval(store, scheduler, clock):
    with store.transaction() as conn:
        loop = _loop(conn)
        schedule = scheduler.create(conn, "u1", loop.id, interval_days=4)
        updated = scheduler.complete_review(conn, schedule.id, 85)

    assert updated.interval_days == 8
    assert updated.times_reviewed == 1
    assert updated.last_score == 85
    assert updated.next_review_at == clock() + timedelta(days=8)


def test_failed_review_resets_interval(store, scheduler):
    with store.transaction() as conn:
        loop = _loop(conn)
        schedule = scheduler.create(conn, "u1", loop.id, interval_days=16)
        updated = scheduler.complete_review(conn, schedule.id, 30)

    assert updated.interval_days == 1


def test_complete_unknown_schedule_raises(store, scheduler):
    with store.transaction() as conn:
        with pytest.raises(NotFoundError):
            scheduler.complete_review(conn, "missing", 90)


def test_find_due_respects_clock_and_user(store, scheduler, clock):
    with store.transaction() as conn:
        mine = _loop(conn, "u1")
        theirs = _loop(conn, "u2")
        scheduler.create(conn, "u1", mine.id)
        scheduler.create(conn, "u2", theirs.id)

        assert scheduler.find_due(conn, "u1") == []

        clock.now = clock.now + timedelta(days=1)
        due = scheduler.find_due(conn, "u1")

    assert [s.loop_id for s in due] == [mine.id]
