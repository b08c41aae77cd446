"""
Loop phase ordering and transition rules.
"""

from typing import Optional

from teachback.store.models import LoopPhase, AttemptType

PHASE_ORDER = list(LoopPhase)

_PHASE_INDEX = {phase: index for index, phase in enumerate(PHASE_ORDER)}


def phase_index(phase: LoopPhase) -> int:
    return _PHASE_INDEX[LoopPhase(phase)]


def is_before(phase: LoopPhase, other: LoopPhase) -> bool:
    """True if `phase` comes strictly earlier than `other`."""
    return phase_index(phase) < phase_index(other)


def initial_phase(chapter_number: Optional[int] = None, chunk_number: Optional[int] = None) -> LoopPhase:
    """Only the very first chunk of a source opens with a prior-knowledge check."""
    if chapter_number == 1 and chunk_number == 1:
        return LoopPhase.PRIOR_KNOWLEDGE
    return LoopPhase.FIRST_ATTEMPT


def phase_after_attempt(current: LoopPhase, attempt_type: AttemptType) -> LoopPhase:
    """
    Phase a loop moves to after an attempt is recorded.

    full_explanation only reacts in first_attempt / second_attempt;
    simplify_challenge always lands on simplify_results (a completed loop
    stays complete); quick_review never changes phase.
    """
    if attempt_type == AttemptType.FULL_EXPLANATION:
        if current == LoopPhase.FIRST_ATTEMPT:
            return LoopPhase.FIRST_RESULTS
        if current == LoopPhase.SECOND_ATTEMPT:
            return LoopPhase.SECOND_RESULTS
        return current

    if attempt_type == AttemptType.SIMPLIFY_CHALLENGE:
        if current == LoopPhase.COMPLETE:
            return current
        return LoopPhase.SIMPLIFY_RESULTS

    return current


def attempt_phase(attempt_type: AttemptType, attempt_number: int) -> Optional[LoopPhase]:
    """Phase credited to concepts covered in an attempt of this type."""
    if attempt_type == AttemptType.SIMPLIFY_CHALLENGE:
        return LoopPhase.SIMPLIFY
    if attempt_type == AttemptType.FULL_EXPLANATION:
        return LoopPhase.SECOND_ATTEMPT if attempt_number >= 2 else LoopPhase.FIRST_ATTEMPT
    return None
