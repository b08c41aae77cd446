"""
Socratic session tracking: target concepts, addressed set and the completion rule.
"""

import sqlite3
from typing import List, Optional, Tuple

from teachback.store.models import (
    LoopAttempt,
    SocraticSession,
    SocraticMessage,
    SocraticStatus,
)
from teachback.store.queries import SocraticQueries, normalize_concept_name
from teachback.store.database import utc_now
from teachback.shared.exceptions import InvalidStateError
from teachback.shared.logging import get_logger

logger = get_logger(__name__)


def is_complete(targets: List[str], addressed: List[str]) -> bool:
    """Set containment: every target appears in the addressed set."""
    if not targets:
        return False
    done = {normalize_concept_name(c) for c in addressed}
    return all(normalize_concept_name(t) in done for t in targets)


class SocraticTracker:
    """Owns the target/addressed bookkeeping of remediation sessions."""

    def __init__(self, clock=None):
        self.clock = clock or utc_now

    @staticmethod
    def targets_for(attempt: Optional[LoopAttempt]) -> List[str]:
        """
        Concepts to remediate: the missed points of the triggering attempt.

        Raises:
            InvalidStateError if there is nothing to remediate
        """
        if attempt is None or not attempt.evaluation.missed_points:
            raise InvalidStateError("No missed concepts to discuss")

        targets: List[str] = []
        seen = set()
        for point in attempt.evaluation.missed_points:
            key = normalize_concept_name(point)
            if key and key not in seen:
                seen.add(key)
                targets.append(point)
        return targets

    @staticmethod
    def resolve_addressed(session: SocraticSession, candidate: Optional[str]) -> Optional[str]:
        """
        Map a concept judged as addressed onto a remaining target.

        Returns the target's own spelling, or None if the candidate is empty,
        not a target, or already addressed.
        """
        if not candidate:
            return None
        key = normalize_concept_name(candidate)
        done = {normalize_concept_name(c) for c in session.concepts_addressed}
        if key in done:
            return None
        for target in session.target_concepts:
            if normalize_concept_name(target) == key:
                return target
        return None

    def start(
        self,
        conn: sqlite3.Connection,
        loop_id: str,
        attempt_id: Optional[str],
        targets: List[str],
        first_question: str
    ) -> SocraticSession:
        """Open a new session; any session still active on the loop is abandoned."""
        SocraticQueries.abandon_active(conn, loop_id)
        session = SocraticQueries.create(conn, loop_id, attempt_id, targets)
        session.messages.append(SocraticMessage(role="assistant", content=first_question, timestamp=self.clock()))
        SocraticQueries.save_progress(conn, session.id, session.messages, session.concepts_addressed, session.status)
        return SocraticQueries.get(conn, session.id)

    def record_turn(
        self,
        conn: sqlite3.Connection,
        session: SocraticSession,
        user_message: str,
        reply: str,
        addressed_candidate: Optional[str]
    ) -> Tuple[SocraticSession, Optional[str], bool]:
        """
        Append one user/assistant exchange and update the addressed set.

        Returns:
            (updated session, newly addressed target or None, completed_now)

        Raises:
            InvalidStateError if the session is not active
        """
        if session.status != SocraticStatus.ACTIVE:
            raise InvalidStateError(f"Socratic session {session.id} is {session.status.value}")

        now = self.clock()
        messages = list(session.messages)
        messages.append(SocraticMessage(role="user", content=user_message, timestamp=now))
        messages.append(SocraticMessage(role="assistant", content=reply, timestamp=now))

        addressed = list(session.concepts_addressed)
        newly_addressed = self.resolve_addressed(session, addressed_candidate)
        if newly_addressed is not None:
            addressed.append(newly_addressed)

        completed_now = is_complete(session.target_concepts, addressed)
        status = SocraticStatus.COMPLETED if completed_now else SocraticStatus.ACTIVE

        SocraticQueries.save_progress(conn, session.id, messages, addressed, status)
        if newly_addressed:
            logger.info(
                f"Concept addressed: {newly_addressed}",
                extra={"loop_id": session.loop_id, "action": "socratic_addressed"}
            )

        return SocraticQueries.get(conn, session.id), newly_addressed, completed_now
