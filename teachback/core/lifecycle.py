"""
Loop lifecycle: ownership checks, the phase state machine and the atomic
state-changing units (attempt recording, completion folding, concept sync).

Every method runs inside the caller's transaction; none of them await.
"""

import sqlite3
import logging
from typing import Optional, Dict, Any, List, Tuple
from dataclasses import dataclass
from decimal import Decimal

from teachback.store.models import (
    LearningLoop,
    LoopAttempt,
    LoopPhase,
    LoopStatus,
    AttemptType,
    Persona,
    Evaluation,
    ReviewSchedule,
    KeyConcept,
    ExtractedRelationship,
)
from teachback.store.queries import (
    LoopQueries,
    AttemptQueries,
    ReviewQueries,
    UserConceptQueries,
    normalize_concept_name,
)
from teachback.core.phases import is_before, phase_after_attempt
from teachback.core.mastery import MasteryEngine, round_half_up
from teachback.core.review import ReviewScheduler
from teachback.graph.concepts import ConceptLinker
from teachback.safety.quota import UsageQuota
from teachback.shared.config import settings
from teachback.shared.exceptions import NotFoundError, AccessDeniedError, InvalidStateError
from teachback.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)

COVERAGE_WEIGHT = 0.6
ACCURACY_WEIGHT = 0.4


def attempt_score(coverage: float, accuracy: float) -> int:
    """Attempt score 0-100 from coverage and accuracy fractions."""
    weighted = (
        Decimal(str(coverage)) * Decimal(str(COVERAGE_WEIGHT))
        + Decimal(str(accuracy)) * Decimal(str(ACCURACY_WEIGHT))
    )
    return max(0, min(100, round_half_up(weighted * 100)))


@dataclass
class RecordedAttempt:
    attempt: LoopAttempt
    next_phase: LoopPhase
    review_schedule: Optional[ReviewSchedule] = None


class LoopManager:
    """Owns the phase state machine for learning loops."""

    def __init__(
        self,
        linker: Optional[ConceptLinker] = None,
        mastery: Optional[MasteryEngine] = None,
        scheduler: Optional[ReviewScheduler] = None,
        quota: Optional[UsageQuota] = None,
        review_score_threshold: Optional[int] = None
    ):
        self.linker = linker or ConceptLinker()
        self.mastery = mastery or MasteryEngine(self.linker)
        self.scheduler = scheduler or ReviewScheduler()
        self.quota = quota or UsageQuota()
        self.review_score_threshold = (
            review_score_threshold if review_score_threshold is not None
            else settings.loop.review_score_threshold
        )

    def load_owned(self, conn: sqlite3.Connection, user_id: str, loop_id: str) -> LearningLoop:
        """
        Raises:
            NotFoundError if the loop does not exist
            AccessDeniedError if another user owns it
        """
        loop = LoopQueries.get(conn, loop_id)
        if loop is None:
            raise NotFoundError(f"Loop {loop_id} not found")
        if loop.user_id != user_id:
            raise AccessDeniedError(f"Loop {loop_id} belongs to another user")
        return loop

    def store_concepts(
        self,
        conn: sqlite3.Connection,
        loop: LearningLoop,
        concepts: List[KeyConcept],
        relationships: List[ExtractedRelationship]
    ) -> Dict[str, str]:
        """Persist extracted concepts on the loop and sync them into the concept graph."""
        LoopQueries.update_concepts(conn, loop.id, concepts, relationships)
        return self.linker.ensure_loop_concepts(conn, loop.id, concepts, relationships)

    def move_forward(self, conn: sqlite3.Connection, loop: LearningLoop, phase: LoopPhase) -> LoopPhase:
        """Advance only if `phase` is later than the current one; never moves back."""
        if is_before(loop.current_phase, phase):
            LoopQueries.update_phase(conn, loop.id, phase)
            return phase
        return loop.current_phase

    def advance_phase(
        self,
        conn: sqlite3.Connection,
        loop: LearningLoop,
        phase: LoopPhase
    ) -> Tuple[LearningLoop, bool]:
        """
        Explicit phase advance.

        Setting the current phase again is a no-op. Reaching `complete` on a loop
        that is not yet mastered marks it mastered and folds mastery once.

        Returns:
            (updated loop, whether mastery was folded)

        Raises:
            InvalidStateError on a backward transition
        """
        phase = LoopPhase(phase)
        if is_before(phase, loop.current_phase):
            raise InvalidStateError(
                f"Cannot move loop back from {loop.current_phase.value} to {phase.value}"
            )

        if phase != loop.current_phase:
            LoopQueries.update_phase(conn, loop.id, phase)

        folded = False
        if phase == LoopPhase.COMPLETE and loop.status != LoopStatus.MASTERED:
            if LoopQueries.mark_mastered(conn, loop.id):
                self.mastery.fold_loop(conn, loop)
                folded = True

        log_with_context(
            logger, logging.INFO, f"Loop phase set to {phase.value}",
            user_id=loop.user_id, loop_id=loop.id, action="advance_phase", folded=folded
        )
        return LoopQueries.get(conn, loop.id), folded

    def record_attempt(
        self,
        conn: sqlite3.Connection,
        loop: LearningLoop,
        attempt_type: AttemptType,
        transcript: str,
        evaluation: Evaluation,
        duration_seconds: int = 0,
        persona: Persona = Persona.COACH,
        speech_metrics: Optional[Dict[str, Any]] = None
    ) -> RecordedAttempt:
        """
        One atomic unit: attempt row, usage increment, phase change and
        review schedule change.
        """
        attempt_type = AttemptType(attempt_type)
        score = attempt_score(evaluation.coverage, evaluation.accuracy)

        previous = AttemptQueries.latest(conn, loop.id)
        score_delta = score - previous.score if previous else None
        previously_covered = (
            {normalize_concept_name(p) for p in previous.evaluation.covered_points} if previous else set()
        )
        newly_covered = [
            p for p in evaluation.covered_points if normalize_concept_name(p) not in previously_covered
        ]

        attempt = AttemptQueries.create(
            conn, loop.id, attempt_type, transcript, duration_seconds, score, evaluation, persona,
            speech_metrics=speech_metrics, score_delta=score_delta, newly_covered=newly_covered
        )
        self.quota.record_usage(conn, loop.user_id)

        next_phase = phase_after_attempt(loop.current_phase, attempt_type)
        if next_phase != loop.current_phase:
            LoopQueries.update_phase(conn, loop.id, next_phase)

        schedule = None
        if attempt_type == AttemptType.SIMPLIFY_CHALLENGE and score >= self.review_score_threshold:
            schedule = self.scheduler.create(conn, loop.user_id, loop.id)
        elif attempt_type == AttemptType.QUICK_REVIEW:
            existing = ReviewQueries.get_for_loop(conn, loop.id)
            if existing is not None:
                schedule = self.scheduler.complete_review(conn, existing.id, score)

        log_with_context(
            logger, logging.INFO, "Attempt recorded",
            user_id=loop.user_id, loop_id=loop.id, action="submit_attempt",
            attempt_type=attempt_type.value, score=score, next_phase=next_phase.value
        )
        return RecordedAttempt(attempt=attempt, next_phase=next_phase, review_schedule=schedule)

    def resync_loop(
        self,
        conn: sqlite3.Connection,
        loop: LearningLoop,
        fold_if_mastered: bool = True
    ) -> Dict[str, Any]:
        """
        Re-run concept sync for one loop; fold a mastered loop that never
        produced any UserConcept rows.
        """
        concept_ids = self.linker.ensure_loop_concepts(conn, loop.id, loop.key_concepts, loop.relationships)
        folded = False
        if (
            fold_if_mastered
            and loop.status == LoopStatus.MASTERED
            and UserConceptQueries.count_for_loop(conn, loop.user_id, loop.id) == 0
        ):
            self.mastery.fold_loop(conn, loop)
            folded = True

        log_with_context(
            logger, logging.INFO, "Loop concepts resynced",
            user_id=loop.user_id, loop_id=loop.id, action="resync_loop",
            concepts=len(concept_ids), folded=folded
        )
        return {"loop_id": loop.id, "concepts": len(concept_ids), "folded": folded}
