"""
All SQL for teachback store operations.
ALL queries use parameterized syntax (?) - NEVER string interpolation of values.
Every method takes an open connection so callers control the transaction.
"""

import json
import sqlite3
from typing import Optional, List, Dict, Any
from datetime import datetime

from teachback.store.database import new_id, utc_now, to_db_time
from teachback.store.models import (
    Concept,
    LoopConcept,
    ConceptRelationship,
    UserConcept,
    LearningLoop,
    LoopAttempt,
    SocraticSession,
    SocraticMessage,
    ReviewSchedule,
    UserAccount,
    KeyConcept,
    ExtractedRelationship,
    Evaluation,
    PriorKnowledgeAnalysis,
    ConceptImportance,
    RelationshipType,
    LoopPhase,
    LoopStatus,
    AttemptType,
    Persona,
    SocraticStatus,
    ReviewStatus,
    SubscriptionTier,
    Precision,
    SourceType,
)


def normalize_concept_name(name: str) -> str:
    """Dedup key for concept identity: lower-cased and trimmed, exact match only."""
    return name.lower().strip()


def _dumps(value: Any) -> str:
    return json.dumps(value)


def _loads(value: Optional[str], default: Any = None) -> Any:
    if value is None:
        return default
    return json.loads(value)


def _row_to_loop(row: sqlite3.Row) -> LearningLoop:
    data = dict(row)
    data["key_concepts"] = _loads(data["key_concepts"], [])
    data["relationships"] = _loads(data["relationships"], [])
    data["prior_knowledge_analysis"] = _loads(data["prior_knowledge_analysis"])
    return LearningLoop(**data)


def _row_to_attempt(row: sqlite3.Row) -> LoopAttempt:
    data = dict(row)
    data["evaluation"] = _loads(data["evaluation"], {})
    data["speech_metrics"] = _loads(data["speech_metrics"])
    data["newly_covered"] = _loads(data["newly_covered"], [])
    return LoopAttempt(**data)


def _row_to_session(row: sqlite3.Row) -> SocraticSession:
    data = dict(row)
    data["target_concepts"] = _loads(data["target_concepts"], [])
    data["messages"] = _loads(data["messages"], [])
    data["concepts_addressed"] = _loads(data["concepts_addressed"], [])
    return SocraticSession(**data)


class ConceptQueries:
    """Queries for the global, deduplicated concept store."""

    @staticmethod
    def upsert(
        conn: sqlite3.Connection,
        name: str,
        description: Optional[str] = None,
        category: Optional[str] = None
    ) -> Concept:
        """
        Look up or create a concept by normalized name.

        An existing concept takes the latest display name; its description is
        only replaced when a new one is supplied.
        """
        normalized = normalize_concept_name(name)
        conn.execute(
            """INSERT INTO concepts (id, name, normalized_name, description, category, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT (normalized_name) DO UPDATE SET
                   name = excluded.name,
                   description = COALESCE(excluded.description, concepts.description),
                   category = COALESCE(excluded.category, concepts.category)""",
            (new_id(), name.strip(), normalized, description or None, category, to_db_time(utc_now()))
        )
        return ConceptQueries.get_by_normalized_name(conn, normalized)

    @staticmethod
    def get(conn: sqlite3.Connection, concept_id: str) -> Optional[Concept]:
        row = conn.execute("SELECT * FROM concepts WHERE id = ?", (concept_id,)).fetchone()
        return Concept(**dict(row)) if row else None

    @staticmethod
    def get_by_normalized_name(conn: sqlite3.Connection, normalized_name: str) -> Optional[Concept]:
        row = conn.execute(
            "SELECT * FROM concepts WHERE normalized_name = ?",
            (normalized_name,)
        ).fetchone()
        return Concept(**dict(row)) if row else None


class LoopConceptQueries:
    """Queries for loop <-> concept links."""

    @staticmethod
    def link(
        conn: sqlite3.Connection,
        loop_id: str,
        concept_id: str,
        importance: ConceptImportance,
        explanation: Optional[str] = None
    ):
        """Idempotent link; demonstration state is never touched here."""
        conn.execute(
            """INSERT INTO loop_concepts (id, loop_id, concept_id, importance, extracted_explanation, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT (loop_id, concept_id) DO UPDATE SET
                   importance = excluded.importance,
                   extracted_explanation = COALESCE(excluded.extracted_explanation, loop_concepts.extracted_explanation)""",
            (new_id(), loop_id, concept_id, importance.value, explanation or None, to_db_time(utc_now()))
        )

    @staticmethod
    def list_for_loop(conn: sqlite3.Connection, loop_id: str) -> List[LoopConcept]:
        rows = conn.execute(
            "SELECT * FROM loop_concepts WHERE loop_id = ? ORDER BY created_at ASC",
            (loop_id,)
        ).fetchall()
        return [LoopConcept(**dict(row)) for row in rows]

    @staticmethod
    def mark_demonstrated(
        conn: sqlite3.Connection,
        loop_id: str,
        concept_id: str,
        phase: LoopPhase
    ) -> bool:
        """Record demonstration once. Returns False if already demonstrated."""
        cursor = conn.execute(
            """UPDATE loop_concepts
               SET was_demonstrated = 1,
                   demonstrated_in_phase = ?,
                   demonstrated_at = ?
               WHERE loop_id = ? AND concept_id = ? AND was_demonstrated = 0""",
            (phase.value, to_db_time(utc_now()), loop_id, concept_id)
        )
        return cursor.rowcount > 0

    @staticmethod
    def cross_connections(conn: sqlite3.Connection, user_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Concepts linked to two or more of the user's loops."""
        rows = conn.execute(
            """SELECT c.id AS concept_id, c.name AS name, COUNT(DISTINCT lc.loop_id) AS loop_count
               FROM loop_concepts lc
               JOIN learning_loops l ON l.id = lc.loop_id
               JOIN concepts c ON c.id = lc.concept_id
               WHERE l.user_id = ?
               GROUP BY c.id, c.name
               HAVING COUNT(DISTINCT lc.loop_id) >= 2
               ORDER BY loop_count DESC, c.name ASC
               LIMIT ?""",
            (user_id, limit)
        ).fetchall()
        return [dict(row) for row in rows]

    @staticmethod
    def loops_for_concept(
        conn: sqlite3.Connection,
        user_id: str,
        concept_id: str,
        limit: int = 3
    ) -> List[Dict[str, Any]]:
        rows = conn.execute(
            """SELECT l.id AS id, COALESCE(l.title, 'Untitled') AS title
               FROM loop_concepts lc
               JOIN learning_loops l ON l.id = lc.loop_id
               WHERE l.user_id = ? AND lc.concept_id = ?
               ORDER BY l.created_at DESC
               LIMIT ?""",
            (user_id, concept_id, limit)
        ).fetchall()
        return [dict(row) for row in rows]


class RelationshipQueries:
    """Queries for directed, typed concept edges."""

    @staticmethod
    def ensure(
        conn: sqlite3.Connection,
        from_concept_id: str,
        to_concept_id: str,
        relationship_type: RelationshipType,
        strength: float = 1.0
    ):
        """Create the edge if absent; existing strength is left alone."""
        conn.execute(
            """INSERT INTO concept_relationships (id, from_concept_id, to_concept_id, relationship_type, strength, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT (from_concept_id, to_concept_id, relationship_type) DO NOTHING""",
            (new_id(), from_concept_id, to_concept_id, relationship_type.value, strength, to_db_time(utc_now()))
        )

    @staticmethod
    def increment_strength(
        conn: sqlite3.Connection,
        from_concept_id: str,
        to_concept_id: str,
        relationship_type: RelationshipType,
        increment: float = 1.0
    ):
        """Atomic increment; creates the edge with `increment` as its strength if absent."""
        conn.execute(
            """INSERT INTO concept_relationships (id, from_concept_id, to_concept_id, relationship_type, strength, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT (from_concept_id, to_concept_id, relationship_type) DO UPDATE SET
                   strength = concept_relationships.strength + excluded.strength""",
            (new_id(), from_concept_id, to_concept_id, relationship_type.value, increment, to_db_time(utc_now()))
        )

    @staticmethod
    def get(
        conn: sqlite3.Connection,
        from_concept_id: str,
        to_concept_id: str,
        relationship_type: RelationshipType
    ) -> Optional[ConceptRelationship]:
        row = conn.execute(
            """SELECT * FROM concept_relationships
               WHERE from_concept_id = ? AND to_concept_id = ? AND relationship_type = ?""",
            (from_concept_id, to_concept_id, relationship_type.value)
        ).fetchone()
        return ConceptRelationship(**dict(row)) if row else None

    @staticmethod
    def list_for_concept(conn: sqlite3.Connection, concept_id: str) -> List[ConceptRelationship]:
        rows = conn.execute(
            """SELECT * FROM concept_relationships
               WHERE from_concept_id = ? OR to_concept_id = ?
               ORDER BY strength DESC""",
            (concept_id, concept_id)
        ).fetchall()
        return [ConceptRelationship(**dict(row)) for row in rows]

    @staticmethod
    def list_between_user_concepts(conn: sqlite3.Connection, user_id: str) -> List[ConceptRelationship]:
        """Edges whose both endpoints the user has a UserConcept record for."""
        rows = conn.execute(
            """SELECT r.* FROM concept_relationships r
               JOIN user_concepts uf ON uf.concept_id = r.from_concept_id AND uf.user_id = ?
               JOIN user_concepts ut ON ut.concept_id = r.to_concept_id AND ut.user_id = ?
               ORDER BY r.strength DESC""",
            (user_id, user_id)
        ).fetchall()
        return [ConceptRelationship(**dict(row)) for row in rows]


class UserConceptQueries:
    """Queries for a user's per-concept progress."""

    @staticmethod
    def get(conn: sqlite3.Connection, user_id: str, concept_id: str) -> Optional[UserConcept]:
        row = conn.execute(
            "SELECT * FROM user_concepts WHERE user_id = ? AND concept_id = ?",
            (user_id, concept_id)
        ).fetchone()
        return UserConcept(**dict(row)) if row else None

    @staticmethod
    def upsert_progress(
        conn: sqlite3.Connection,
        user_id: str,
        concept_id: str,
        mastery_score: int,
        times_encountered: int,
        times_demonstrated: int,
        demonstrated: bool
    ):
        """Write absolute counts; last_demonstrated_at moves only on demonstration."""
        now = to_db_time(utc_now())
        demonstrated_at = now if demonstrated else None
        conn.execute(
            """INSERT INTO user_concepts (
                   id, user_id, concept_id, mastery_score, times_encountered, times_demonstrated,
                   last_seen_at, last_demonstrated_at, created_at, updated_at
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT (user_id, concept_id) DO UPDATE SET
                   mastery_score = excluded.mastery_score,
                   times_encountered = excluded.times_encountered,
                   times_demonstrated = excluded.times_demonstrated,
                   last_seen_at = excluded.last_seen_at,
                   last_demonstrated_at = COALESCE(excluded.last_demonstrated_at, user_concepts.last_demonstrated_at),
                   updated_at = excluded.updated_at""",
            (
                new_id(), user_id, concept_id, mastery_score, times_encountered, times_demonstrated,
                now, demonstrated_at, now, now
            )
        )

    @staticmethod
    def list_with_concepts(conn: sqlite3.Connection, user_id: str) -> List[Dict[str, Any]]:
        """UserConcept rows joined to concept name/category."""
        rows = conn.execute(
            """SELECT uc.*, c.name AS name, c.normalized_name AS normalized_name,
                      c.category AS category, c.description AS description
               FROM user_concepts uc
               JOIN concepts c ON c.id = uc.concept_id
               WHERE uc.user_id = ?
               ORDER BY c.name ASC""",
            (user_id,)
        ).fetchall()
        return [dict(row) for row in rows]

    @staticmethod
    def count_for_loop(conn: sqlite3.Connection, user_id: str, loop_id: str) -> int:
        row = conn.execute(
            """SELECT COUNT(*) AS n FROM user_concepts uc
               JOIN loop_concepts lc ON lc.concept_id = uc.concept_id
               WHERE uc.user_id = ? AND lc.loop_id = ?""",
            (user_id, loop_id)
        ).fetchone()
        return row["n"]


class LoopQueries:
    """Queries for learning loops."""

    @staticmethod
    def create(
        conn: sqlite3.Connection,
        user_id: str,
        source_text: str,
        source_type: SourceType,
        precision: Precision,
        current_phase: LoopPhase,
        title: Optional[str] = None,
        subject_id: Optional[str] = None
    ) -> LearningLoop:
        loop_id = new_id()
        now = to_db_time(utc_now())
        conn.execute(
            """INSERT INTO learning_loops (
                   id, user_id, subject_id, title, source_text, source_type, source_word_count,
                   precision, status, current_phase, created_at, updated_at
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                loop_id, user_id, subject_id, title, source_text, source_type.value,
                len(source_text.split()), precision.value, LoopStatus.IN_PROGRESS.value,
                current_phase.value, now, now
            )
        )
        return LoopQueries.get(conn, loop_id)

    @staticmethod
    def get(conn: sqlite3.Connection, loop_id: str) -> Optional[LearningLoop]:
        row = conn.execute("SELECT * FROM learning_loops WHERE id = ?", (loop_id,)).fetchone()
        return _row_to_loop(row) if row else None

    @staticmethod
    def list_for_user(
        conn: sqlite3.Connection,
        user_id: str,
        status: Optional[LoopStatus] = None,
        subject_id: Optional[str] = None
    ) -> List[LearningLoop]:
        query = "SELECT * FROM learning_loops WHERE user_id = ?"
        params: List[Any] = [user_id]
        if status:
            query += " AND status = ?"
            params.append(status.value)
        if subject_id:
            query += " AND subject_id = ?"
            params.append(subject_id)
        query += " ORDER BY updated_at DESC"
        return [_row_to_loop(row) for row in conn.execute(query, params).fetchall()]

    @staticmethod
    def list_with_concepts(conn: sqlite3.Connection, user_id: Optional[str] = None) -> List[LearningLoop]:
        """Loops that carry a non-empty key-concept list."""
        query = "SELECT * FROM learning_loops WHERE key_concepts != '[]'"
        params: List[Any] = []
        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY created_at ASC"
        return [_row_to_loop(row) for row in conn.execute(query, params).fetchall()]

    @staticmethod
    def update_concepts(
        conn: sqlite3.Connection,
        loop_id: str,
        concepts: List[KeyConcept],
        relationships: List[ExtractedRelationship]
    ):
        conn.execute(
            """UPDATE learning_loops
               SET key_concepts = ?, relationships = ?, updated_at = ?
               WHERE id = ?""",
            (
                _dumps([c.model_dump(mode="json") for c in concepts]),
                _dumps([r.model_dump(mode="json", by_alias=True) for r in relationships]),
                to_db_time(utc_now()),
                loop_id
            )
        )

    @staticmethod
    def update_phase(conn: sqlite3.Connection, loop_id: str, phase: LoopPhase):
        conn.execute(
            "UPDATE learning_loops SET current_phase = ?, updated_at = ? WHERE id = ?",
            (phase.value, to_db_time(utc_now()), loop_id)
        )

    @staticmethod
    def mark_mastered(conn: sqlite3.Connection, loop_id: str) -> bool:
        """Set status mastered. Returns False if the loop was already mastered."""
        cursor = conn.execute(
            """UPDATE learning_loops SET status = ?, updated_at = ?
               WHERE id = ? AND status != ?""",
            (LoopStatus.MASTERED.value, to_db_time(utc_now()), loop_id, LoopStatus.MASTERED.value)
        )
        return cursor.rowcount > 0

    @staticmethod
    def update_prior_knowledge(
        conn: sqlite3.Connection,
        loop_id: str,
        transcript: Optional[str],
        analysis: Optional[PriorKnowledgeAnalysis],
        score: int,
        phase: LoopPhase
    ):
        conn.execute(
            """UPDATE learning_loops
               SET prior_knowledge_transcript = ?,
                   prior_knowledge_analysis = ?,
                   prior_knowledge_score = ?,
                   current_phase = ?,
                   updated_at = ?
               WHERE id = ?""",
            (
                transcript,
                _dumps(analysis.model_dump(mode="json")) if analysis else None,
                score,
                phase.value,
                to_db_time(utc_now()),
                loop_id
            )
        )


class AttemptQueries:
    """Queries for immutable loop attempts."""

    @staticmethod
    def create(
        conn: sqlite3.Connection,
        loop_id: str,
        attempt_type: AttemptType,
        transcript: str,
        duration_seconds: int,
        score: int,
        evaluation: Evaluation,
        persona: Persona,
        speech_metrics: Optional[Dict[str, Any]] = None,
        score_delta: Optional[int] = None,
        newly_covered: Optional[List[str]] = None
    ) -> LoopAttempt:
        """Insert the next attempt for the loop; attempt numbers are sequential per loop."""
        row = conn.execute(
            "SELECT COALESCE(MAX(attempt_number), 0) AS n FROM loop_attempts WHERE loop_id = ?",
            (loop_id,)
        ).fetchone()
        attempt_number = row["n"] + 1
        attempt_id = new_id()

        conn.execute(
            """INSERT INTO loop_attempts (
                   id, loop_id, attempt_number, attempt_type, transcript, duration_seconds,
                   score, coverage, accuracy, evaluation, speech_metrics, persona,
                   score_delta, newly_covered, created_at
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                attempt_id, loop_id, attempt_number, attempt_type.value, transcript, duration_seconds,
                score, evaluation.coverage, evaluation.accuracy,
                _dumps(evaluation.model_dump(mode="json")),
                _dumps(speech_metrics) if speech_metrics is not None else None,
                persona.value, score_delta, _dumps(newly_covered or []),
                to_db_time(utc_now())
            )
        )
        return AttemptQueries.get(conn, attempt_id)

    @staticmethod
    def get(conn: sqlite3.Connection, attempt_id: str) -> Optional[LoopAttempt]:
        row = conn.execute("SELECT * FROM loop_attempts WHERE id = ?", (attempt_id,)).fetchone()
        return _row_to_attempt(row) if row else None

    @staticmethod
    def latest(conn: sqlite3.Connection, loop_id: str) -> Optional[LoopAttempt]:
        row = conn.execute(
            """SELECT * FROM loop_attempts WHERE loop_id = ?
               ORDER BY attempt_number DESC LIMIT 1""",
            (loop_id,)
        ).fetchone()
        return _row_to_attempt(row) if row else None

    @staticmethod
    def list_for_loop(conn: sqlite3.Connection, loop_id: str) -> List[LoopAttempt]:
        rows = conn.execute(
            "SELECT * FROM loop_attempts WHERE loop_id = ? ORDER BY attempt_number ASC",
            (loop_id,)
        ).fetchall()
        return [_row_to_attempt(row) for row in rows]


class SocraticQueries:
    """Queries for Socratic remediation sessions."""

    @staticmethod
    def create(
        conn: sqlite3.Connection,
        loop_id: str,
        attempt_id: Optional[str],
        target_concepts: List[str]
    ) -> SocraticSession:
        session_id = new_id()
        now = to_db_time(utc_now())
        conn.execute(
            """INSERT INTO socratic_sessions (
                   id, loop_id, attempt_id, target_concepts, messages, concepts_addressed,
                   status, created_at, updated_at
               ) VALUES (?, ?, ?, ?, '[]', '[]', ?, ?, ?)""",
            (session_id, loop_id, attempt_id, _dumps(target_concepts), SocraticStatus.ACTIVE.value, now, now)
        )
        return SocraticQueries.get(conn, session_id)

    @staticmethod
    def get(conn: sqlite3.Connection, session_id: str) -> Optional[SocraticSession]:
        row = conn.execute("SELECT * FROM socratic_sessions WHERE id = ?", (session_id,)).fetchone()
        return _row_to_session(row) if row else None

    @staticmethod
    def active_for_loop(conn: sqlite3.Connection, loop_id: str) -> Optional[SocraticSession]:
        row = conn.execute(
            """SELECT * FROM socratic_sessions
               WHERE loop_id = ? AND status = ?
               ORDER BY updated_at DESC LIMIT 1""",
            (loop_id, SocraticStatus.ACTIVE.value)
        ).fetchone()
        return _row_to_session(row) if row else None

    @staticmethod
    def abandon_active(conn: sqlite3.Connection, loop_id: str) -> int:
        """Mark the loop's active sessions abandoned. `updated_at` is left as is."""
        cursor = conn.execute(
            "UPDATE socratic_sessions SET status = ? WHERE loop_id = ? AND status = ?",
            (SocraticStatus.ABANDONED.value, loop_id, SocraticStatus.ACTIVE.value)
        )
        return cursor.rowcount

    @staticmethod
    def latest_for_loop(conn: sqlite3.Connection, loop_id: str) -> Optional[SocraticSession]:
        row = conn.execute(
            """SELECT * FROM socratic_sessions
               WHERE loop_id = ? AND status != ?
               ORDER BY updated_at DESC LIMIT 1""",
            (loop_id, SocraticStatus.ABANDONED.value)
        ).fetchone()
        return _row_to_session(row) if row else None

    @staticmethod
    def save_progress(
        conn: sqlite3.Connection,
        session_id: str,
        messages: List[SocraticMessage],
        concepts_addressed: List[str],
        status: SocraticStatus
    ):
        conn.execute(
            """UPDATE socratic_sessions
               SET messages = ?, concepts_addressed = ?, status = ?, updated_at = ?
               WHERE id = ?""",
            (
                _dumps([m.model_dump(mode="json") for m in messages]),
                _dumps(concepts_addressed),
                status.value,
                to_db_time(utc_now()),
                session_id
            )
        )


class ReviewQueries:
    """Queries for the spaced-repetition schedule."""

    @staticmethod
    def create(
        conn: sqlite3.Connection,
        user_id: str,
        loop_id: str,
        next_review_at: datetime,
        interval_days: int
    ) -> ReviewSchedule:
        """One schedule per loop; re-creating resets the existing row."""
        now = to_db_time(utc_now())
        conn.execute(
            """INSERT INTO review_schedule (
                   id, user_id, loop_id, next_review_at, interval_days, times_reviewed, status, created_at
               ) VALUES (?, ?, ?, ?, ?, 0, ?, ?)
               ON CONFLICT (loop_id) DO UPDATE SET
                   next_review_at = excluded.next_review_at,
                   interval_days = excluded.interval_days,
                   status = excluded.status""",
            (
                new_id(), user_id, loop_id, to_db_time(next_review_at), interval_days,
                ReviewStatus.SCHEDULED.value, now
            )
        )
        return ReviewQueries.get_for_loop(conn, loop_id)

    @staticmethod
    def get(conn: sqlite3.Connection, schedule_id: str) -> Optional[ReviewSchedule]:
        row = conn.execute("SELECT * FROM review_schedule WHERE id = ?", (schedule_id,)).fetchone()
        return ReviewSchedule(**dict(row)) if row else None

    @staticmethod
    def get_for_loop(conn: sqlite3.Connection, loop_id: str) -> Optional[ReviewSchedule]:
        row = conn.execute("SELECT * FROM review_schedule WHERE loop_id = ?", (loop_id,)).fetchone()
        return ReviewSchedule(**dict(row)) if row else None

    @staticmethod
    def record_review(
        conn: sqlite3.Connection,
        schedule_id: str,
        score: int,
        interval_days: int,
        next_review_at: datetime
    ):
        conn.execute(
            """UPDATE review_schedule
               SET times_reviewed = times_reviewed + 1,
                   last_score = ?,
                   last_reviewed_at = ?,
                   interval_days = ?,
                   next_review_at = ?,
                   status = ?
               WHERE id = ?""",
            (
                score, to_db_time(utc_now()), interval_days, to_db_time(next_review_at),
                ReviewStatus.SCHEDULED.value, schedule_id
            )
        )

    @staticmethod
    def list_due(conn: sqlite3.Connection, user_id: str, now: datetime) -> List[ReviewSchedule]:
        rows = conn.execute(
            """SELECT * FROM review_schedule
               WHERE user_id = ? AND status = ? AND next_review_at <= ?
               ORDER BY next_review_at ASC""",
            (user_id, ReviewStatus.SCHEDULED.value, to_db_time(now))
        ).fetchall()
        return [ReviewSchedule(**dict(row)) for row in rows]


class UserQueries:
    """Queries for usage counters and subscription tier."""

    @staticmethod
    def get(conn: sqlite3.Connection, user_id: str) -> Optional[UserAccount]:
        row = conn.execute(
            """SELECT id, tier, loops_used_today, usage_day, loops_used_this_month, usage_month
               FROM users WHERE id = ?""",
            (user_id,)
        ).fetchone()
        return UserAccount(**dict(row)) if row else None

    @staticmethod
    def ensure(
        conn: sqlite3.Connection,
        user_id: str,
        tier: SubscriptionTier = SubscriptionTier.FREE
    ) -> UserAccount:
        conn.execute(
            """INSERT INTO users (id, tier, created_at) VALUES (?, ?, ?)
               ON CONFLICT (id) DO NOTHING""",
            (user_id, tier.value, to_db_time(utc_now()))
        )
        return UserQueries.get(conn, user_id)

    @staticmethod
    def set_tier(conn: sqlite3.Connection, user_id: str, tier: SubscriptionTier):
        UserQueries.ensure(conn, user_id)
        conn.execute("UPDATE users SET tier = ? WHERE id = ?", (tier.value, user_id))

    @staticmethod
    def save_usage(
        conn: sqlite3.Connection,
        user_id: str,
        loops_used_today: int,
        usage_day: str,
        loops_used_this_month: int,
        usage_month: str
    ):
        conn.execute(
            """UPDATE users
               SET loops_used_today = ?, usage_day = ?,
                   loops_used_this_month = ?, usage_month = ?
               WHERE id = ?""",
            (loops_used_today, usage_day, loops_used_this_month, usage_month, user_id)
        )
