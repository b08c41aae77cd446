"""
Pydantic models for the learning loop engine.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class LoopPhase(str, Enum):
    """Phases of a learning loop, declared in forward order."""
    PRIOR_KNOWLEDGE = "prior_knowledge"
    READING = "reading"
    FIRST_ATTEMPT = "first_attempt"
    FIRST_RESULTS = "first_results"
    LEARNING = "learning"
    SECOND_ATTEMPT = "second_attempt"
    SECOND_RESULTS = "second_results"
    SIMPLIFY = "simplify"
    SIMPLIFY_RESULTS = "simplify_results"
    COMPLETE = "complete"


class LoopStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    MASTERED = "mastered"
    ARCHIVED = "archived"


class AttemptType(str, Enum):
    FULL_EXPLANATION = "full_explanation"
    SIMPLIFY_CHALLENGE = "simplify_challenge"
    QUICK_REVIEW = "quick_review"


class Precision(str, Enum):
    """Extraction granularity and evaluation strictness."""
    ESSENTIAL = "essential"
    BALANCED = "balanced"
    PRECISE = "precise"


class ConceptImportance(str, Enum):
    CORE = "core"
    SUPPORTING = "supporting"
    DETAIL = "detail"


class RelationshipType(str, Enum):
    CAUSES = "causes"
    ENABLES = "enables"
    EXEMPLIFIES = "exemplifies"
    CONTRASTS = "contrasts"
    PREREQUISITE = "prerequisite"


class SocraticStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class ReviewStatus(str, Enum):
    SCHEDULED = "scheduled"
    DUE = "due"
    COMPLETED = "completed"
    PAUSED = "paused"


class Persona(str, Enum):
    COACH = "coach"
    PROFESSOR = "professor"
    SERGEANT = "sergeant"
    HYPE = "hype"
    CHILL = "chill"


class SourceType(str, Enum):
    ARTICLE = "article"
    MEETING = "meeting"
    PODCAST = "podcast"
    VIDEO = "video"
    BOOK = "book"
    LECTURE = "lecture"
    OTHER = "other"


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"


class KeyConcept(BaseModel):
    """A concept extracted from a loop's source text."""
    concept: str
    explanation: str = ""
    importance: ConceptImportance = ConceptImportance.SUPPORTING


class ExtractedRelationship(BaseModel):
    """A typed edge between two extracted concept names."""
    model_config = ConfigDict(populate_by_name=True)

    from_concept: str = Field(alias="from")
    to_concept: str = Field(alias="to")
    type: RelationshipType


class Concept(BaseModel):
    """Deduplicated unit of knowledge shared across loops and users."""
    id: str
    name: str
    normalized_name: str
    description: Optional[str] = None
    category: Optional[str] = None
    created_at: Optional[datetime] = None


class LoopConcept(BaseModel):
    """Link between one learning loop and one concept."""
    id: str
    loop_id: str
    concept_id: str
    importance: ConceptImportance
    extracted_explanation: Optional[str] = None
    was_demonstrated: bool = False
    demonstrated_in_phase: Optional[LoopPhase] = None
    demonstrated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ConceptRelationship(BaseModel):
    """Directed typed edge between two concepts with accumulated strength."""
    id: str
    from_concept_id: str
    to_concept_id: str
    relationship_type: RelationshipType
    strength: float = 1.0
    created_at: Optional[datetime] = None


class UserConcept(BaseModel):
    """A user's aggregate relationship to a concept."""
    id: str
    user_id: str
    concept_id: str
    mastery_score: int = Field(default=0, ge=0, le=100)
    times_encountered: int = 0
    times_demonstrated: int = 0
    last_seen_at: Optional[datetime] = None
    last_demonstrated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Misconception(BaseModel):
    claim: str
    correction: str = ""


class PriorKnowledgeAnalysis(BaseModel):
    """Assessment of what a learner knew before reading."""
    known_concepts: List[str] = Field(default_factory=list)
    partial_concepts: List[str] = Field(default_factory=list)
    unknown_concepts: List[str] = Field(default_factory=list)
    misconceptions: List[Misconception] = Field(default_factory=list)
    focus_areas: List[str] = Field(default_factory=list)
    confidence_score: int = Field(default=0, ge=0, le=100)
    feedback: str = ""


class LearningLoop(BaseModel):
    """One study session over one piece of source material."""
    id: str
    user_id: str
    subject_id: Optional[str] = None
    title: Optional[str] = None
    source_text: str
    source_type: SourceType = SourceType.OTHER
    source_word_count: int = 0
    precision: Precision = Precision.BALANCED
    key_concepts: List[KeyConcept] = Field(default_factory=list)
    relationships: List[ExtractedRelationship] = Field(default_factory=list)
    status: LoopStatus = LoopStatus.IN_PROGRESS
    current_phase: LoopPhase = LoopPhase.FIRST_ATTEMPT
    prior_knowledge_transcript: Optional[str] = None
    prior_knowledge_analysis: Optional[PriorKnowledgeAnalysis] = None
    prior_knowledge_score: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TTSScript(BaseModel):
    intro: str = ""
    score_announcement: str = ""
    covered_summary: str = ""
    missed_summary: str = ""
    closing: str = ""


class Evaluation(BaseModel):
    """Structured judgement returned by the evaluation service."""
    key_points: List[str] = Field(default_factory=list)
    covered_points: List[str] = Field(default_factory=list)
    missed_points: List[str] = Field(default_factory=list)
    coverage: float = Field(default=0.0, ge=0.0, le=1.0)
    accuracy: float = Field(default=0.0, ge=0.0, le=1.0)
    feedback: str = ""
    tts_script: TTSScript = Field(default_factory=TTSScript)


class LoopAttempt(BaseModel):
    """One recorded explanation attempt. Immutable once stored."""
    id: str
    loop_id: str
    attempt_number: int
    attempt_type: AttemptType
    transcript: str
    duration_seconds: int = 0
    score: int = Field(ge=0, le=100)
    coverage: float
    accuracy: float
    evaluation: Evaluation
    speech_metrics: Optional[Dict[str, Any]] = None
    persona: Persona = Persona.COACH
    score_delta: Optional[int] = None
    newly_covered: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class SocraticMessage(BaseModel):
    role: str  # "user" or "assistant"
    content: str
    timestamp: datetime


class SocraticSession(BaseModel):
    """Remediation dialogue over the concepts missed in an attempt."""
    id: str
    loop_id: str
    attempt_id: Optional[str] = None
    target_concepts: List[str] = Field(default_factory=list)
    messages: List[SocraticMessage] = Field(default_factory=list)
    concepts_addressed: List[str] = Field(default_factory=list)
    status: SocraticStatus = SocraticStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReviewSchedule(BaseModel):
    """Spaced-repetition entry for one (user, loop)."""
    id: str
    user_id: str
    loop_id: str
    next_review_at: datetime
    interval_days: int
    times_reviewed: int = 0
    last_reviewed_at: Optional[datetime] = None
    last_score: Optional[int] = None
    status: ReviewStatus = ReviewStatus.SCHEDULED
    created_at: Optional[datetime] = None


class UserAccount(BaseModel):
    """Usage counters and subscription tier for quota checks."""
    id: str
    tier: SubscriptionTier = SubscriptionTier.FREE
    loops_used_today: int = 0
    usage_day: Optional[str] = None  # YYYY-MM-DD (UTC)
    loops_used_this_month: int = 0
    usage_month: Optional[str] = None  # YYYY-MM (UTC)
