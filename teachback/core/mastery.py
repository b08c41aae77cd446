"""
Mastery scoring: per-user concept mastery from encounter/demonstration history,
plus display-time recency decay.
"""

import sqlite3
import logging
from typing import Optional, Dict, Set
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from teachback.store.models import LearningLoop, LoopPhase, ConceptImportance
from teachback.store.queries import (
    AttemptQueries,
    SocraticQueries,
    UserConceptQueries,
    LoopConceptQueries,
    RelationshipQueries,
    normalize_concept_name,
)
from teachback.store.database import utc_now
from teachback.graph.concepts import ConceptLinker
from teachback.core.phases import attempt_phase
from teachback.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)

IMPORTANCE_WEIGHTS: Dict[ConceptImportance, float] = {
    ConceptImportance.CORE: 1.15,
    ConceptImportance.SUPPORTING: 1.00,
    ConceptImportance.DETAIL: 0.85,
}

PHASE_WEIGHTS: Dict[LoopPhase, float] = {
    LoopPhase.SIMPLIFY: 1.10,
    LoopPhase.SECOND_ATTEMPT: 1.00,
    LoopPhase.LEARNING: 0.90,
    LoopPhase.FIRST_ATTEMPT: 0.85,
}
DEFAULT_PHASE_WEIGHT = 1.00

# (max days since last seen, exclusive) -> display factor
DECAY_STEPS = [
    (7, 1.00),
    (14, 0.90),
    (30, 0.75),
    (60, 0.50),
]
STALE_FACTOR = 0.25

MASTERED_THRESHOLD = 80
LEARNING_THRESHOLD = 40


# Weights are applied as exact decimals so 50 * 1.15 rounds to 58, not 57.
def _weight(value: float) -> Decimal:
    return Decimal(str(value))


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_mastery_score(
    times_encountered: int,
    times_demonstrated: int,
    importance: ConceptImportance,
    demonstrated_phase: Optional[LoopPhase]
) -> int:
    """
    Mastery in [0, 100].

    The demonstration ratio is weighted by importance and phase only when the
    concept was demonstrated in this pass.
    """
    if times_encountered <= 0:
        return 0

    base = Decimal(times_demonstrated) * 100 / Decimal(times_encountered)
    if demonstrated_phase is not None:
        base *= _weight(IMPORTANCE_WEIGHTS.get(importance, 1.0))
        base *= _weight(PHASE_WEIGHTS.get(demonstrated_phase, DEFAULT_PHASE_WEIGHT))

    return max(0, min(100, round_half_up(base)))


def recency_factor(last_seen_at: Optional[datetime], now: Optional[datetime] = None) -> float:
    """Display multiplier by whole days since the concept was last seen."""
    if last_seen_at is None:
        return STALE_FACTOR

    now = now or utc_now()
    days = (now - last_seen_at).days
    for max_days, factor in DECAY_STEPS:
        if days < max_days:
            return factor
    return STALE_FACTOR


def decayed_mastery(mastery_score: int, last_seen_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Displayed mastery; stored mastery is never mutated by decay."""
    return round_half_up(Decimal(mastery_score) * _weight(recency_factor(last_seen_at, now)))


def mastery_bucket(score: int) -> str:
    if score >= MASTERED_THRESHOLD:
        return "mastered"
    if score >= LEARNING_THRESHOLD:
        return "learning"
    return "new"


class MasteryEngine:
    """Folds a completed loop into the user's durable concept knowledge."""

    def __init__(self, linker: Optional[ConceptLinker] = None):
        self.linker = linker or ConceptLinker()

    def demonstrated_phases(self, conn: sqlite3.Connection, loop: LearningLoop) -> Dict[str, LoopPhase]:
        """
        Normalized concept name -> phase it was demonstrated in.

        Covered points of the latest attempt take that attempt's phase; concepts
        addressed in the latest Socratic session fill in as `learning`.
        """
        phases: Dict[str, LoopPhase] = {}

        latest = AttemptQueries.latest(conn, loop.id)
        if latest is not None:
            phase = attempt_phase(latest.attempt_type, latest.attempt_number)
            if phase is not None:
                for point in latest.evaluation.covered_points:
                    phases[normalize_concept_name(point)] = phase

        session = SocraticQueries.latest_for_loop(conn, loop.id)
        if session is not None:
            for concept in session.concepts_addressed:
                phases.setdefault(normalize_concept_name(concept), LoopPhase.LEARNING)

        return phases

    def fold_loop(self, conn: sqlite3.Connection, loop: LearningLoop) -> Dict[str, int]:
        """
        Run the completion fold for one loop inside the caller's transaction.

        Returns normalized concept name -> new stored mastery. A loop without
        key concepts is a no-op.
        """
        if not loop.key_concepts:
            log_with_context(
                logger, logging.INFO, "Skipping mastery fold, loop has no concepts",
                user_id=loop.user_id, loop_id=loop.id, action="mastery_fold"
            )
            return {}

        concept_ids = self.linker.ensure_loop_concepts(conn, loop.id, loop.key_concepts, loop.relationships)
        phases = self.demonstrated_phases(conn, loop)

        results: Dict[str, int] = {}
        seen: Set[str] = set()
        for key_concept in loop.key_concepts:
            normalized = normalize_concept_name(key_concept.concept)
            concept_id = concept_ids.get(normalized)
            if concept_id is None or normalized in seen:
                continue
            seen.add(normalized)

            phase = phases.get(normalized)
            demonstrated = phase is not None
            existing = UserConceptQueries.get(conn, loop.user_id, concept_id)
            times_encountered = (existing.times_encountered if existing else 0) + 1
            times_demonstrated = (existing.times_demonstrated if existing else 0) + (1 if demonstrated else 0)
            mastery = compute_mastery_score(times_encountered, times_demonstrated, key_concept.importance, phase)

            UserConceptQueries.upsert_progress(
                conn, loop.user_id, concept_id,
                mastery_score=mastery,
                times_encountered=times_encountered,
                times_demonstrated=times_demonstrated,
                demonstrated=demonstrated
            )
            if demonstrated:
                LoopConceptQueries.mark_demonstrated(conn, loop.id, concept_id, phase)

            results[normalized] = mastery

        strengthened = 0
        for rel in loop.relationships:
            from_name = normalize_concept_name(rel.from_concept)
            to_name = normalize_concept_name(rel.to_concept)
            from_id = concept_ids.get(from_name)
            to_id = concept_ids.get(to_name)
            if not from_id or not to_id:
                continue
            if from_name in phases and to_name in phases:
                RelationshipQueries.increment_strength(conn, from_id, to_id, rel.type, 1.0)
                strengthened += 1

        log_with_context(
            logger, logging.INFO, "Folded loop into concept mastery",
            user_id=loop.user_id, loop_id=loop.id, action="mastery_fold",
            concepts=len(results), demonstrated=sum(1 for n in results if n in phases),
            relationships_strengthened=strengthened
        )
        return results
