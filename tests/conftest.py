"""
Pytest fixtures for teachback tests.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock

from teachback.core.engine import LearningEngine
from teachback.core.lifecycle import LoopManager
from teachback.core.mastery import MasteryEngine
from teachback.core.review import ReviewScheduler
from teachback.graph.concepts import ConceptLinker
from teachback.graph.view import KnowledgeGraphView
from teachback.safety.quota import UsageQuota
from teachback.session.socratic import SocraticTracker
from teachback.services.dialogue import SocraticReply
from teachback.services.extraction import ExtractionResult
from teachback.store.database import LearningStore
from teachback.store.models import (
    KeyConcept,
    ExtractedRelationship,
    ConceptImportance,
    RelationshipType,
    Evaluation,
    PriorKnowledgeAnalysis,
)


SOURCE_TEXT = (
    "Photosynthesis converts light energy into chemical energy. Chlorophyll in the "
    "chloroplasts absorbs light, and stomata on the leaf surface let carbon dioxide in."
)

KEY_CONCEPTS = [
    KeyConcept(concept="Photosynthesis", explanation="Light to chemical energy", importance=ConceptImportance.CORE),
    KeyConcept(concept="Chlorophyll", explanation="Pigment that absorbs light", importance=ConceptImportance.SUPPORTING),
    KeyConcept(concept="Stomata", explanation="Pores for gas exchange", importance=ConceptImportance.DETAIL),
]

RELATIONSHIPS = [
    ExtractedRelationship(from_concept="Chlorophyll", to_concept="Photosynthesis", type=RelationshipType.ENABLES),
    ExtractedRelationship(from_concept="Stomata", to_concept="Photosynthesis", type=RelationshipType.ENABLES),
]


def make_evaluation(covered, missed, coverage=None, accuracy=1.0) -> Evaluation:
    """Evaluation with coverage derived from the point lists unless given."""
    total = len(covered) + len(missed)
    if coverage is None:
        coverage = len(covered) / total if total else 0.0
    return Evaluation(
        key_points=list(covered) + list(missed),
        covered_points=list(covered),
        missed_points=list(missed),
        coverage=coverage,
        accuracy=accuracy,
        feedback="Nice work.",
    )


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path):
    """LearningStore on a fresh SQLite file."""
    return LearningStore(tmp_path / "teachback.db")


@pytest.fixture
def mock_extractor():
    mock = AsyncMock()
    mock.extract.return_value = ExtractionResult(
        concepts=list(KEY_CONCEPTS), relationships=list(RELATIONSHIPS)
    )
    return mock


@pytest.fixture
def mock_evaluator():
    mock = AsyncMock()
    mock.evaluate_with_concepts.return_value = make_evaluation(
        ["Photosynthesis", "Chlorophyll"], ["Stomata"]
    )
    mock.assess_prior_knowledge.return_value = PriorKnowledgeAnalysis(
        known_concepts=["Photosynthesis"],
        unknown_concepts=["Chlorophyll", "Stomata"],
        focus_areas=["Stomata"],
        confidence_score=35,
        feedback="You know the basics.",
    )
    return mock


@pytest.fixture
def mock_dialogue():
    mock = AsyncMock()
    mock.generate_question.return_value = "What lets carbon dioxide into a leaf?"
    mock.generate_response.return_value = SocraticReply(message="Tell me more.")
    return mock


@pytest.fixture
def manager():
    linker = ConceptLinker()
    return LoopManager(
        linker=linker,
        mastery=MasteryEngine(linker),
        scheduler=ReviewScheduler(),
        quota=UsageQuota(),
    )


@pytest.fixture
def engine(store, mock_extractor, mock_evaluator, mock_dialogue, manager):
    """LearningEngine over a temp store with mocked LLM-backed services."""
    return LearningEngine(
        store=store,
        extractor=mock_extractor,
        evaluator=mock_evaluator,
        dialogue=mock_dialogue,
        manager=manager,
        tracker=SocraticTracker(),
        view=KnowledgeGraphView(),
    )


@pytest.fixture
def no_tokenizer(monkeypatch):
    """Skip tiktoken truncation in service prompt building."""
    def passthrough(text, max_tokens, model=None, suffix="..."):
        return text

    for module in (
        "teachback.services.extraction",
        "teachback.services.evaluation",
        "teachback.services.dialogue",
    ):
        monkeypatch.setattr(f"{module}.truncate_to_tokens", passthrough)
