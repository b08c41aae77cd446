"""
LearningEngine: the operations exposed to the HTTP layer.

External service calls (extraction, evaluation, dialogue) are awaited fully
before any write transaction opens, so a failed call never leaves partial state.
"""

import logging
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from teachback.store.database import LearningStore
from teachback.store.models import (
    LearningLoop,
    LoopAttempt,
    LoopPhase,
    LoopStatus,
    AttemptType,
    Persona,
    Precision,
    SourceType,
    Evaluation,
    KeyConcept,
    PriorKnowledgeAnalysis,
    ReviewSchedule,
    SocraticSession,
    SocraticStatus,
)
from teachback.store.queries import (
    LoopQueries,
    AttemptQueries,
    SocraticQueries,
    ReviewQueries,
)
from teachback.core.phases import initial_phase
from teachback.core.lifecycle import LoopManager
from teachback.graph.view import (
    KnowledgeGraphView,
    KnowledgeGraph,
    KnowledgeStats,
    KnowledgeInsights,
    ConceptDetail,
    UserConceptView,
)
from teachback.session.socratic import SocraticTracker
from teachback.services.extraction import ConceptExtractor, ExtractionResult
from teachback.services.evaluation import ExplanationEvaluator
from teachback.services.dialogue import SocraticDialogue
from teachback.shared.exceptions import (
    NotFoundError,
    InvalidStateError,
    QuotaExceededError,
)
from teachback.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)

SOURCE_PREVIEW_CHARS = 200


class LoopDetail(BaseModel):
    loop: LearningLoop
    attempts: List[LoopAttempt] = Field(default_factory=list)
    current_socratic_session: Optional[SocraticSession] = None
    review_schedule: Optional[ReviewSchedule] = None


class AttemptOutcome(BaseModel):
    attempt: LoopAttempt
    next_phase: LoopPhase
    evaluation: Evaluation
    review_schedule: Optional[ReviewSchedule] = None
    quota_warning: Optional[str] = None


class SocraticStart(BaseModel):
    session: SocraticSession
    message: str


class SocraticTurn(BaseModel):
    session: SocraticSession
    message: str
    addressed_concept: Optional[str] = None
    all_addressed: bool = False


class PriorKnowledgeOutcome(BaseModel):
    analysis: Optional[PriorKnowledgeAnalysis] = None
    next_phase: LoopPhase
    loop: LearningLoop


class LoopSummary(BaseModel):
    id: str
    title: Optional[str] = None
    source_preview: str
    key_concepts: List[KeyConcept] = Field(default_factory=list)


class DueReview(BaseModel):
    schedule: ReviewSchedule
    loop: Optional[LoopSummary] = None


class LearningEngine:
    """Wires the store, the lifecycle manager and the external services together."""

    def __init__(
        self,
        store: Optional[LearningStore] = None,
        extractor: Optional[ConceptExtractor] = None,
        evaluator: Optional[ExplanationEvaluator] = None,
        dialogue: Optional[SocraticDialogue] = None,
        manager: Optional[LoopManager] = None,
        tracker: Optional[SocraticTracker] = None,
        view: Optional[KnowledgeGraphView] = None
    ):
        self.store = store or LearningStore()
        self.extractor = extractor or ConceptExtractor()
        self.evaluator = evaluator or ExplanationEvaluator()
        self.dialogue = dialogue or SocraticDialogue()
        self.manager = manager or LoopManager()
        self.tracker = tracker or SocraticTracker()
        self.view = view or KnowledgeGraphView()

    # ------------------------------------------------------------------ loops

    async def create_loop(
        self,
        user_id: str,
        source_text: str,
        source_type: SourceType = SourceType.OTHER,
        title: Optional[str] = None,
        subject_id: Optional[str] = None,
        precision: Precision = Precision.BALANCED,
        chapter_number: Optional[int] = None,
        chunk_number: Optional[int] = None
    ) -> LearningLoop:
        """Create a loop and extract its concepts; extraction never blocks creation."""
        if not source_text or not source_text.strip():
            raise ValueError("source_text is required")

        precision = Precision(precision)
        extraction = await self.extractor.extract(source_text, precision)

        with self.store.transaction() as conn:
            loop = LoopQueries.create(
                conn, user_id, source_text, SourceType(source_type), precision,
                initial_phase(chapter_number, chunk_number),
                title=title, subject_id=subject_id
            )
            if extraction.concepts:
                self.manager.store_concepts(conn, loop, extraction.concepts, extraction.relationships)
            loop = LoopQueries.get(conn, loop.id)

        self._log_extraction(loop, extraction)
        log_with_context(
            logger, logging.INFO, "Loop created",
            user_id=user_id, loop_id=loop.id, action="create_loop",
            phase=loop.current_phase.value, concepts=len(loop.key_concepts)
        )
        return loop

    def list_loops(
        self,
        user_id: str,
        status: Optional[LoopStatus] = None,
        subject_id: Optional[str] = None
    ) -> List[LearningLoop]:
        with self.store.transaction() as conn:
            return LoopQueries.list_for_user(conn, user_id, status=status, subject_id=subject_id)

    def get_loop(self, user_id: str, loop_id: str) -> LoopDetail:
        with self.store.transaction() as conn:
            loop = self.manager.load_owned(conn, user_id, loop_id)
            return LoopDetail(
                loop=loop,
                attempts=AttemptQueries.list_for_loop(conn, loop_id),
                current_socratic_session=SocraticQueries.active_for_loop(conn, loop_id),
                review_schedule=ReviewQueries.get_for_loop(conn, loop_id),
            )

    async def _ensure_concepts(self, loop: LearningLoop) -> LearningLoop:
        """Lazy fallback extraction for loops created without concepts."""
        if loop.key_concepts:
            return loop

        extraction = await self.extractor.extract(loop.source_text, loop.precision)
        self._log_extraction(loop, extraction, fallback=True)
        if not extraction.concepts:
            return loop

        with self.store.transaction() as conn:
            self.manager.store_concepts(conn, loop, extraction.concepts, extraction.relationships)
            return LoopQueries.get(conn, loop.id)

    def _log_extraction(self, loop: LearningLoop, extraction: ExtractionResult, fallback: bool = False):
        if extraction.concepts:
            return
        log_with_context(
            logger, logging.WARNING, "Loop has no extracted concepts",
            user_id=loop.user_id, loop_id=loop.id,
            action="fallback_extraction" if fallback else "create_loop",
            degraded=extraction.degraded
        )

    # --------------------------------------------------------------- attempts

    async def submit_attempt(
        self,
        user_id: str,
        loop_id: str,
        attempt_type: AttemptType,
        transcript: str,
        duration_seconds: int = 0,
        persona: Persona = Persona.COACH,
        speech_metrics: Optional[Dict[str, Any]] = None
    ) -> AttemptOutcome:
        """
        Evaluate and record an attempt.

        Raises:
            QuotaExceededError before any work when the user is over quota
            InvalidStateError for a simplify challenge on a loop without concepts
            EvaluationError when evaluation fails (nothing is recorded)
        """
        attempt_type = AttemptType(attempt_type)

        with self.store.transaction() as conn:
            loop = self.manager.load_owned(conn, user_id, loop_id)
            self._check_quota(conn, user_id)

        loop = await self._ensure_concepts(loop)
        if attempt_type == AttemptType.SIMPLIFY_CHALLENGE and not loop.key_concepts:
            raise InvalidStateError("Cannot run a simplify challenge before any concepts exist")

        evaluation = await self.evaluator.evaluate_with_concepts(
            loop.source_text,
            [c.concept for c in loop.key_concepts],
            transcript,
            persona=persona,
            attempt_type=attempt_type,
            precision=loop.precision,
            prior_knowledge=loop.prior_knowledge_analysis,
        )

        with self.store.transaction() as conn:
            loop = self.manager.load_owned(conn, user_id, loop_id)
            self._check_quota(conn, user_id)
            recorded = self.manager.record_attempt(
                conn, loop, attempt_type, transcript, evaluation,
                duration_seconds=duration_seconds, persona=persona, speech_metrics=speech_metrics
            )
            warning = self.manager.quota.check_usage(conn, user_id).warning

        return AttemptOutcome(
            attempt=recorded.attempt,
            next_phase=recorded.next_phase,
            evaluation=evaluation,
            review_schedule=recorded.review_schedule,
            quota_warning=warning,
        )

    def _check_quota(self, conn, user_id: str):
        decision = self.manager.quota.check_usage(conn, user_id)
        if not decision.allowed:
            log_with_context(
                logger, logging.INFO, "Attempt denied by usage quota",
                user_id=user_id, action="quota_denied", reset_at=decision.reset_at.isoformat()
            )
            raise QuotaExceededError(
                f"Usage limit of {decision.limit} reached",
                remaining=0,
                reset_at=decision.reset_at,
                limit=decision.limit
            )

    def advance_phase(self, user_id: str, loop_id: str, phase: LoopPhase) -> LearningLoop:
        with self.store.transaction() as conn:
            loop = self.manager.load_owned(conn, user_id, loop_id)
            updated, _ = self.manager.advance_phase(conn, loop, LoopPhase(phase))
            return updated

    # --------------------------------------------------------------- socratic

    async def start_socratic(
        self,
        user_id: str,
        loop_id: str,
        attempt_id: Optional[str] = None
    ) -> SocraticStart:
        """
        Open a remediation session over the missed points of an attempt
        (the latest one unless `attempt_id` is given).
        """
        with self.store.transaction() as conn:
            loop = self.manager.load_owned(conn, user_id, loop_id)
            if attempt_id:
                attempt = AttemptQueries.get(conn, attempt_id)
                if attempt is None or attempt.loop_id != loop_id:
                    raise NotFoundError(f"Attempt {attempt_id} not found")
            else:
                attempt = AttemptQueries.latest(conn, loop_id)

        targets = self.tracker.targets_for(attempt)
        question = await self.dialogue.generate_question(loop.source_text, targets, [], "start")

        with self.store.transaction() as conn:
            loop = self.manager.load_owned(conn, user_id, loop_id)
            session = self.tracker.start(conn, loop_id, attempt.id, targets, question)
            self.manager.move_forward(conn, loop, LoopPhase.LEARNING)

        log_with_context(
            logger, logging.INFO, "Socratic session started",
            user_id=user_id, loop_id=loop_id, action="start_socratic", targets=len(targets)
        )
        return SocraticStart(session=session, message=question)

    async def send_socratic_message(
        self,
        user_id: str,
        loop_id: str,
        session_id: str,
        content: str
    ) -> SocraticTurn:
        with self.store.transaction() as conn:
            loop = self.manager.load_owned(conn, user_id, loop_id)
            session = self._load_session(conn, loop_id, session_id)

        if session.status != SocraticStatus.ACTIVE:
            raise InvalidStateError(f"Socratic session {session_id} is {session.status.value}")

        reply = await self.dialogue.generate_response(
            loop.source_text,
            loop.key_concepts,
            session.target_concepts,
            session.concepts_addressed,
            session.messages,
            content,
        )

        with self.store.transaction() as conn:
            loop = self.manager.load_owned(conn, user_id, loop_id)
            session = self._load_session(conn, loop_id, session_id)
            updated, addressed, completed = self.tracker.record_turn(
                conn, session, content, reply.message, reply.addressed_concept
            )
            if completed:
                self.manager.move_forward(conn, loop, LoopPhase.SECOND_ATTEMPT)

        if completed:
            log_with_context(
                logger, logging.INFO, "Socratic session completed",
                user_id=user_id, loop_id=loop_id, action="complete_socratic"
            )
        return SocraticTurn(
            session=updated,
            message=reply.message,
            addressed_concept=addressed,
            all_addressed=completed,
        )

    def _load_session(self, conn, loop_id: str, session_id: str) -> SocraticSession:
        session = SocraticQueries.get(conn, session_id)
        if session is None or session.loop_id != loop_id:
            raise NotFoundError(f"Socratic session {session_id} not found")
        return session

    # -------------------------------------------------------- prior knowledge

    def _require_prior_knowledge_phase(self, loop: LearningLoop):
        if loop.current_phase not in (LoopPhase.PRIOR_KNOWLEDGE, LoopPhase.READING):
            raise InvalidStateError(
                f"Prior knowledge can't be recorded in phase {loop.current_phase.value}"
            )

    async def submit_prior_knowledge(
        self,
        user_id: str,
        loop_id: str,
        transcript: str,
        duration_seconds: int = 0
    ) -> PriorKnowledgeOutcome:
        with self.store.transaction() as conn:
            loop = self.manager.load_owned(conn, user_id, loop_id)
        self._require_prior_knowledge_phase(loop)

        loop = await self._ensure_concepts(loop)
        analysis = await self.evaluator.assess_prior_knowledge(
            loop.source_text, [c.concept for c in loop.key_concepts], transcript
        )

        with self.store.transaction() as conn:
            loop = self.manager.load_owned(conn, user_id, loop_id)
            self._require_prior_knowledge_phase(loop)
            LoopQueries.update_prior_knowledge(
                conn, loop_id, transcript, analysis, analysis.confidence_score, LoopPhase.FIRST_ATTEMPT
            )
            loop = LoopQueries.get(conn, loop_id)

        log_with_context(
            logger, logging.INFO, "Prior knowledge recorded",
            user_id=user_id, loop_id=loop_id, action="prior_knowledge",
            score=analysis.confidence_score, duration_seconds=duration_seconds
        )
        return PriorKnowledgeOutcome(analysis=analysis, next_phase=LoopPhase.FIRST_ATTEMPT, loop=loop)

    def skip_prior_knowledge(self, user_id: str, loop_id: str) -> PriorKnowledgeOutcome:
        with self.store.transaction() as conn:
            loop = self.manager.load_owned(conn, user_id, loop_id)
            self._require_prior_knowledge_phase(loop)
            LoopQueries.update_prior_knowledge(conn, loop_id, None, None, 0, LoopPhase.FIRST_ATTEMPT)
            loop = LoopQueries.get(conn, loop_id)

        log_with_context(
            logger, logging.INFO, "Prior knowledge skipped",
            user_id=user_id, loop_id=loop_id, action="skip_prior_knowledge"
        )
        return PriorKnowledgeOutcome(next_phase=LoopPhase.FIRST_ATTEMPT, loop=loop)

    # ---------------------------------------------------------------- reviews

    def list_due_reviews(self, user_id: str) -> List[DueReview]:
        with self.store.transaction() as conn:
            due = []
            for schedule in self.manager.scheduler.find_due(conn, user_id):
                loop = LoopQueries.get(conn, schedule.loop_id)
                summary = None
                if loop is not None:
                    summary = LoopSummary(
                        id=loop.id,
                        title=loop.title,
                        source_preview=loop.source_text[:SOURCE_PREVIEW_CHARS],
                        key_concepts=loop.key_concepts,
                    )
                due.append(DueReview(schedule=schedule, loop=summary))
            return due

    # -------------------------------------------------------------- knowledge

    def get_knowledge_graph(self, user_id: str) -> KnowledgeGraph:
        with self.store.transaction() as conn:
            return self.view.graph(conn, user_id)

    def get_knowledge_stats(self, user_id: str) -> KnowledgeStats:
        with self.store.transaction() as conn:
            return self.view.stats(conn, user_id)

    def list_user_concepts(self, user_id: str) -> List[UserConceptView]:
        with self.store.transaction() as conn:
            return self.view.user_concepts(conn, user_id)

    def get_concept_detail(self, user_id: str, concept_id: str) -> ConceptDetail:
        with self.store.transaction() as conn:
            return self.view.concept_detail(conn, user_id, concept_id)

    def get_insights(self, user_id: str) -> KnowledgeInsights:
        with self.store.transaction() as conn:
            return self.view.insights(conn, user_id)

    # ------------------------------------------------------------ maintenance

    def resync_loop(self, loop: LearningLoop, fold_if_mastered: bool = True) -> Dict[str, Any]:
        with self.store.transaction() as conn:
            return self.manager.resync_loop(conn, loop, fold_if_mastered=fold_if_mastered)
