"""
Read side of the knowledge graph: visualization payload, aggregate stats,
concept detail and insights. All mastery values shown here are decayed.
"""

import sqlite3
from collections import Counter
from typing import Optional, List, Dict, Any
from datetime import datetime, timedelta
from pydantic import BaseModel, Field

from teachback.store.models import Concept, RelationshipType
from teachback.store.queries import (
    ConceptQueries,
    UserConceptQueries,
    RelationshipQueries,
    LoopConceptQueries,
)
from teachback.store.database import utc_now
from teachback.core.mastery import decayed_mastery, mastery_bucket
from teachback.shared.exceptions import NotFoundError

NEEDS_REVIEW_MASTERY = 60
WEAK_SPOT_MASTERY = 50
STALE_AFTER_DAYS = 7


class GraphNode(BaseModel):
    id: str
    name: str
    mastery: int
    category: Optional[str] = None
    times_encountered: int = 0
    last_seen: Optional[datetime] = None


class GraphEdge(BaseModel):
    source: str
    target: str
    type: RelationshipType
    strength: float


class KnowledgeStats(BaseModel):
    total_concepts: int = 0
    average_mastery: float = 0.0
    mastered_count: int = 0
    learning_count: int = 0
    new_count: int = 0


class KnowledgeGraph(BaseModel):
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)
    stats: KnowledgeStats = Field(default_factory=KnowledgeStats)


class UserConceptView(BaseModel):
    """A UserConcept joined to its concept, with decayed mastery."""
    concept: Concept
    mastery_score: int
    stored_mastery_score: int
    times_encountered: int
    times_demonstrated: int
    last_seen_at: Optional[datetime] = None
    last_demonstrated_at: Optional[datetime] = None


class RelatedConcept(BaseModel):
    concept: Concept
    type: RelationshipType
    strength: float
    direction: str  # "outgoing" or "incoming"
    mastery: int = 0


class ConceptDetail(BaseModel):
    concept: Concept
    mastery: int = 0
    times_encountered: int = 0
    times_demonstrated: int = 0
    last_seen: Optional[datetime] = None
    related_concepts: List[RelatedConcept] = Field(default_factory=list)


class InsightConcept(BaseModel):
    id: str
    name: str
    mastery: int
    times_encountered: int
    last_seen: Optional[datetime] = None
    days_since_last_seen: Optional[int] = None


class LoopRef(BaseModel):
    id: str
    title: str


class CrossConnection(BaseModel):
    id: str
    name: str
    loop_count: int
    loops: List[LoopRef] = Field(default_factory=list)


class KnowledgeInsights(BaseModel):
    needs_review: List[InsightConcept] = Field(default_factory=list)
    recent_progress: List[InsightConcept] = Field(default_factory=list)
    weak_spots: List[InsightConcept] = Field(default_factory=list)
    cross_connections: List[CrossConnection] = Field(default_factory=list)
    stats: KnowledgeStats = Field(default_factory=KnowledgeStats)


def build_stats(masteries: List[int]) -> KnowledgeStats:
    """Aggregate already-decayed mastery values."""
    if not masteries:
        return KnowledgeStats()

    buckets = Counter(mastery_bucket(m) for m in masteries)
    return KnowledgeStats(
        total_concepts=len(masteries),
        average_mastery=sum(masteries) / len(masteries),
        mastered_count=buckets["mastered"],
        learning_count=buckets["learning"],
        new_count=buckets["new"],
    )


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class KnowledgeGraphView:
    """Builds user-facing views of the concept graph."""

    def __init__(self, clock=None):
        self.clock = clock or utc_now

    def _rows(self, conn: sqlite3.Connection, user_id: str) -> List[Dict[str, Any]]:
        rows = UserConceptQueries.list_with_concepts(conn, user_id)
        for row in rows:
            row["last_seen_at"] = _parse_time(row["last_seen_at"])
            row["last_demonstrated_at"] = _parse_time(row["last_demonstrated_at"])
        return rows

    def graph(self, conn: sqlite3.Connection, user_id: str) -> KnowledgeGraph:
        now = self.clock()
        nodes = [
            GraphNode(
                id=row["concept_id"],
                name=row["name"],
                mastery=decayed_mastery(row["mastery_score"], row["last_seen_at"], now),
                category=row["category"],
                times_encountered=row["times_encountered"],
                last_seen=row["last_seen_at"],
            )
            for row in self._rows(conn, user_id)
        ]
        edges = [
            GraphEdge(
                source=rel.from_concept_id,
                target=rel.to_concept_id,
                type=rel.relationship_type,
                strength=rel.strength,
            )
            for rel in RelationshipQueries.list_between_user_concepts(conn, user_id)
        ]
        return KnowledgeGraph(nodes=nodes, edges=edges, stats=build_stats([n.mastery for n in nodes]))

    def stats(self, conn: sqlite3.Connection, user_id: str) -> KnowledgeStats:
        now = self.clock()
        return build_stats([
            decayed_mastery(row["mastery_score"], row["last_seen_at"], now)
            for row in self._rows(conn, user_id)
        ])

    def user_concepts(self, conn: sqlite3.Connection, user_id: str) -> List[UserConceptView]:
        now = self.clock()
        return [
            UserConceptView(
                concept=Concept(
                    id=row["concept_id"],
                    name=row["name"],
                    normalized_name=row["normalized_name"],
                    description=row["description"],
                    category=row["category"],
                ),
                mastery_score=decayed_mastery(row["mastery_score"], row["last_seen_at"], now),
                stored_mastery_score=row["mastery_score"],
                times_encountered=row["times_encountered"],
                times_demonstrated=row["times_demonstrated"],
                last_seen_at=row["last_seen_at"],
                last_demonstrated_at=row["last_demonstrated_at"],
            )
            for row in self._rows(conn, user_id)
        ]

    def concept_detail(self, conn: sqlite3.Connection, user_id: str, concept_id: str) -> ConceptDetail:
        """
        Concept with the user's decayed mastery and its related concepts.

        Raises:
            NotFoundError if the concept does not exist
        """
        concept = ConceptQueries.get(conn, concept_id)
        if concept is None:
            raise NotFoundError(f"Concept {concept_id} not found")

        now = self.clock()
        progress = UserConceptQueries.get(conn, user_id, concept_id)

        related: List[RelatedConcept] = []
        for rel in RelationshipQueries.list_for_concept(conn, concept_id):
            outgoing = rel.from_concept_id == concept_id
            other_id = rel.to_concept_id if outgoing else rel.from_concept_id
            other = ConceptQueries.get(conn, other_id)
            if other is None:
                continue
            other_progress = UserConceptQueries.get(conn, user_id, other_id)
            related.append(RelatedConcept(
                concept=other,
                type=rel.relationship_type,
                strength=rel.strength,
                direction="outgoing" if outgoing else "incoming",
                mastery=decayed_mastery(other_progress.mastery_score, other_progress.last_seen_at, now)
                if other_progress else 0,
            ))

        return ConceptDetail(
            concept=concept,
            mastery=decayed_mastery(progress.mastery_score, progress.last_seen_at, now) if progress else 0,
            times_encountered=progress.times_encountered if progress else 0,
            times_demonstrated=progress.times_demonstrated if progress else 0,
            last_seen=progress.last_seen_at if progress else None,
            related_concepts=related,
        )

    def insights(self, conn: sqlite3.Connection, user_id: str) -> KnowledgeInsights:
        now = self.clock()
        rows = self._rows(conn, user_id)
        stale_cutoff = now - timedelta(days=STALE_AFTER_DAYS)

        def to_insight(row: Dict[str, Any]) -> InsightConcept:
            last_seen = row["last_seen_at"]
            return InsightConcept(
                id=row["concept_id"],
                name=row["name"],
                mastery=decayed_mastery(row["mastery_score"], last_seen, now),
                times_encountered=row["times_encountered"],
                last_seen=last_seen,
                days_since_last_seen=(now - last_seen).days if last_seen else None,
            )

        def is_stale(row: Dict[str, Any]) -> bool:
            return row["last_seen_at"] is None or row["last_seen_at"] < stale_cutoff

        needs_review = sorted(
            (r for r in rows if r["mastery_score"] < NEEDS_REVIEW_MASTERY or is_stale(r)),
            key=lambda r: (r["last_seen_at"] or datetime.min.replace(tzinfo=now.tzinfo), r["mastery_score"]),
        )[:5]

        recent = sorted(
            (r for r in rows if not is_stale(r)),
            key=lambda r: r["last_seen_at"],
            reverse=True,
        )[:8]

        weak = sorted(
            (r for r in rows if r["times_encountered"] >= 2 and r["mastery_score"] < WEAK_SPOT_MASTERY),
            key=lambda r: r["mastery_score"],
        )[:5]

        connections = [
            CrossConnection(
                id=item["concept_id"],
                name=item["name"],
                loop_count=item["loop_count"],
                loops=[LoopRef(**loop) for loop in LoopConceptQueries.loops_for_concept(conn, user_id, item["concept_id"])],
            )
            for item in LoopConceptQueries.cross_connections(conn, user_id, limit=5)
        ]

        return KnowledgeInsights(
            needs_review=[to_insight(r) for r in needs_review],
            recent_progress=[to_insight(r) for r in recent],
            weak_spots=[to_insight(r) for r in weak],
            cross_connections=connections,
            stats=build_stats([decayed_mastery(r["mastery_score"], r["last_seen_at"], now) for r in rows]),
        )
