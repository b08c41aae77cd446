"""
Tests for Socratic session tracking and the completion rule.
"""

import pytest

from teachback.session.socratic import SocraticTracker, is_complete
from teachback.store.models import (
    AttemptType,
    LoopPhase,
    Persona,
    Precision,
    SocraticStatus,
    SourceType,
)
from teachback.store.queries import AttemptQueries, LoopQueries, SocraticQueries
from teachback.shared.exceptions import InvalidStateError

from conftest import SOURCE_TEXT, make_evaluation


def test_completion_is_set_containment():
    assert is_complete(["A", "B"], ["b", "a"]) is True
    assert is_complete(["A", "B"], ["A"]) is False
    assert is_complete(["A"], ["A", "Extra"]) is True


def test_empty_targets_never_complete():
    assert is_complete([], []) is False
    assert is_complete([], ["A"]) is False


def test_targets_require_missed_points(store):
    with store.transaction() as conn:
        loop = LoopQueries.create(
            conn, "u1", SOURCE_TEXT, SourceType.OTHER, Precision.BALANCED, LoopPhase.FIRST_ATTEMPT
        )
        perfect = AttemptQueries.create(
            conn, loop.id, AttemptType.FULL_EXPLANATION, "all of it", 30, 100,
            make_evaluation(["Photosynthesis"], []), Persona.COACH
        )

    with pytest.raises(InvalidStateError):
        SocraticTracker.targets_for(None)
    with pytest.raises(InvalidStateError):
        SocraticTracker.targets_for(perfect)


def test_targets_are_deduplicated(store):
    with store.transaction() as conn:
        loop = LoopQueries.create(
            conn, "u1", SOURCE_TEXT, SourceType.OTHER, Precision.BALANCED, LoopPhase.FIRST_ATTEMPT
        )
        attempt = AttemptQueries.create(
            conn, loop.id, AttemptType.FULL_EXPLANATION, "some", 30, 40,
            make_evaluation([], ["Stomata", "stomata ", "Chlorophyll"]), Persona.COACH
        )

    assert SocraticTracker.targets_for(attempt) == ["Stomata", "Chlorophyll"]


@pytest.fixture
def session(store, clock):
    tracker = SocraticTracker(clock=clock)
    with store.transaction() as conn:
        loop = LoopQueries.create(
            conn, "u1", SOURCE_TEXT, SourceType.OTHER, Precision.BALANCED, LoopPhase.FIRST_RESULTS
        )
        started = tracker.start(conn, loop.id, None, ["Stomata", "Chlorophyll"], "What are stomata?")
    return tracker, started


def test_start_records_first_question(session):
    _, started = session
    assert started.status == SocraticStatus.ACTIVE
    assert [m.role for m in started.messages] == ["assistant"]
    assert started.messages[0].content == "What are stomata?"
    assert started.concepts_addressed == []


def test_resolve_uses_target_spelling(session):
    _, started = session
    assert SocraticTracker.resolve_addressed(started, "  STOMATA") == "Stomata"
    assert SocraticTracker.resolve_addressed(started, "Photosynthesis") is None
    assert SocraticTracker.resolve_addressed(started, None) is None


def test_turns_complete_session_without_duplicates(store, session):
    tracker, started = session
    with store.transaction() as conn:
        updated, addressed, done = tracker.record_turn(conn, started, "Pores in leaves", "Right!", "stomata")
    assert addressed == "Stomata"
    assert done is False

    with store.transaction() as conn:
        updated, addressed, done = tracker.record_turn(conn, updated, "Pores again", "Yes.", "Stomata")
    assert addressed is None
    assert updated.concepts_addressed == ["Stomata"]
    assert done is False

    with store.transaction() as conn:
        updated, addressed, done = tracker.record_turn(conn, updated, "Green pigment", "Exactly.", "Chlorophyll")
    assert addressed == "Chlorophyll"
    assert done is True
    assert updated.status == SocraticStatus.COMPLETED
    assert len(updated.messages) == 7


def test_off_target_concept_is_ignored(store, session):
    tracker, started = session
    with store.transaction() as conn:
        updated, addressed, done = tracker.record_turn(conn, started, "Sunlight", "Hmm.", "Photosynthesis")
    assert addressed is None
    assert updated.concepts_addressed == []
    assert done is False


def test_completed_session_rejects_turns(store, session):
    tracker, started = session
    with store.transaction() as conn:
        SocraticQueries.save_progress(conn, started.id, started.messages, [], SocraticStatus.COMPLETED)
        closed = SocraticQueries.get(conn, started.id)

    with store.transaction() as conn:
        with pytest.raises(InvalidStateError):
            tracker.record_turn(conn, closed, "more", "reply", None)
