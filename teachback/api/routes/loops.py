"""
Learning loop endpoints: creation, attempts, phases, Socratic sessions,
prior knowledge and due reviews.
"""

from typing import Optional, List, Dict, Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from teachback.api.dependencies import EngineDep, UserIdDep
from teachback.core.engine import (
    LoopDetail,
    AttemptOutcome,
    SocraticStart,
    SocraticTurn,
    PriorKnowledgeOutcome,
    DueReview,
)
from teachback.store.models import (
    LearningLoop,
    LoopPhase,
    LoopStatus,
    AttemptType,
    Persona,
    Precision,
    SourceType,
)

router = APIRouter(prefix="/api/loops", tags=["loops"])


class CreateLoopRequest(BaseModel):
    source_text: str = Field(min_length=1)
    source_type: SourceType = SourceType.OTHER
    title: Optional[str] = None
    subject_id: Optional[str] = None
    precision: Precision = Precision.BALANCED
    chapter_number: Optional[int] = None
    chunk_number: Optional[int] = None


class SubmitAttemptRequest(BaseModel):
    transcript: str = Field(min_length=1)
    attempt_type: AttemptType = AttemptType.FULL_EXPLANATION
    duration_seconds: int = Field(default=0, ge=0)
    persona: Persona = Persona.COACH
    speech_metrics: Optional[Dict[str, Any]] = None


class AdvancePhaseRequest(BaseModel):
    phase: LoopPhase


class StartSocraticRequest(BaseModel):
    attempt_id: Optional[str] = None


class SocraticMessageRequest(BaseModel):
    content: str = Field(min_length=1)


class PriorKnowledgeRequest(BaseModel):
    transcript: str = Field(min_length=1)
    duration_seconds: int = Field(default=0, ge=0)


@router.post("", response_model=LearningLoop, status_code=201)
async def create_loop(body: CreateLoopRequest, engine: EngineDep, user_id: UserIdDep):
    return await engine.create_loop(
        user_id,
        body.source_text,
        source_type=body.source_type,
        title=body.title,
        subject_id=body.subject_id,
        precision=body.precision,
        chapter_number=body.chapter_number,
        chunk_number=body.chunk_number,
    )


@router.get("", response_model=List[LearningLoop])
async def list_loops(
    engine: EngineDep,
    user_id: UserIdDep,
    status: Optional[LoopStatus] = None,
    subject_id: Optional[str] = None,
):
    return engine.list_loops(user_id, status=status, subject_id=subject_id)


# Declared before /{loop_id} so "reviews" is not taken as a loop id
@router.get("/reviews/due", response_model=List[DueReview])
async def list_due_reviews(engine: EngineDep, user_id: UserIdDep):
    return engine.list_due_reviews(user_id)


@router.get("/{loop_id}", response_model=LoopDetail)
async def get_loop(loop_id: str, engine: EngineDep, user_id: UserIdDep):
    return engine.get_loop(user_id, loop_id)


@router.post("/{loop_id}/attempts", response_model=AttemptOutcome, status_code=201)
async def submit_attempt(loop_id: str, body: SubmitAttemptRequest, engine: EngineDep, user_id: UserIdDep):
    return await engine.submit_attempt(
        user_id,
        loop_id,
        body.attempt_type,
        body.transcript,
        duration_seconds=body.duration_seconds,
        persona=body.persona,
        speech_metrics=body.speech_metrics,
    )


@router.post("/{loop_id}/phase", response_model=LearningLoop)
async def advance_phase(loop_id: str, body: AdvancePhaseRequest, engine: EngineDep, user_id: UserIdDep):
    return engine.advance_phase(user_id, loop_id, body.phase)


@router.post("/{loop_id}/socratic", response_model=SocraticStart, status_code=201)
async def start_socratic(
    loop_id: str,
    engine: EngineDep,
    user_id: UserIdDep,
    body: Optional[StartSocraticRequest] = None,
):
    attempt_id = body.attempt_id if body else None
    return await engine.start_socratic(user_id, loop_id, attempt_id=attempt_id)


@router.post("/{loop_id}/socratic/{session_id}/message", response_model=SocraticTurn)
async def send_socratic_message(
    loop_id: str,
    session_id: str,
    body: SocraticMessageRequest,
    engine: EngineDep,
    user_id: UserIdDep,
):
    return await engine.send_socratic_message(user_id, loop_id, session_id, body.content)


@router.post("/{loop_id}/prior-knowledge", response_model=PriorKnowledgeOutcome)
async def submit_prior_knowledge(
    loop_id: str,
    body: PriorKnowledgeRequest,
    engine: EngineDep,
    user_id: UserIdDep,
):
    return await engine.submit_prior_knowledge(
        user_id, loop_id, body.transcript, duration_seconds=body.duration_seconds
    )


@router.post("/{loop_id}/skip-prior-knowledge", response_model=PriorKnowledgeOutcome)
async def skip_prior_knowledge(loop_id: str, engine: EngineDep, user_id: UserIdDep):
    return engine.skip_prior_knowledge(user_id, loop_id)
