"""
Tests for the knowledge graph view: decayed stats, concept detail and insights.
"""

import pytest
from datetime import timedelta

from teachback.graph.concepts import ConceptLinker
from teachback.graph.view import KnowledgeGraphView, build_stats
from teachback.store.database import to_db_time
from teachback.store.models import KeyConcept, LoopPhase, Precision, RelationshipType, SourceType
from teachback.store.queries import (
    LoopQueries,
    RelationshipQueries,
    UserConceptQueries,
)
from teachback.shared.exceptions import NotFoundError

from conftest import SOURCE_TEXT


def _seed(conn, user_id, name, mastery, encountered, last_seen, loop_id):
    ids = ConceptLinker().ensure_loop_concepts(conn, loop_id, [KeyConcept(concept=name)])
    concept_id = ids[name.lower()]
    UserConceptQueries.upsert_progress(
        conn, user_id, concept_id,
        mastery_score=mastery,
        times_encountered=encountered,
        times_demonstrated=0,
        demonstrated=False,
    )
    conn.execute(
        "UPDATE user_concepts SET last_seen_at = ? WHERE user_id = ? AND concept_id = ?",
        (to_db_time(last_seen), user_id, concept_id)
    )
    return concept_id


def _loop(conn, user_id="u1", title=None):
    return LoopQueries.create(
        conn, user_id, SOURCE_TEXT, SourceType.ARTICLE, Precision.BALANCED, LoopPhase.COMPLETE, title=title
    )


@pytest.fixture
def seeded(store, clock):
    now = clock()
    with store.transaction() as conn:
        first = _loop(conn, title="Cells")
        second = _loop(conn, title="Energy")
        ids = {
            "fresh": _seed(conn, "u1", "Mitosis", 90, 1, now - timedelta(days=1), first.id),
            "old": _seed(conn, "u1", "Meiosis", 90, 1, now - timedelta(days=20), first.id),
            "weak": _seed(conn, "u1", "ATP", 30, 3, now - timedelta(days=2), second.id),
        }
        # Mitosis appears in both loops
        ConceptLinker().ensure_loop_concepts(conn, second.id, [KeyConcept(concept="Mitosis")])
        RelationshipQueries.ensure(conn, ids["weak"], ids["fresh"], RelationshipType.ENABLES)
    return ids


def test_build_stats_buckets():
    stats = build_stats([90, 80, 79, 40, 39, 0])
    assert stats.total_concepts == 6
    assert stats.mastered_count == 2
    assert stats.learning_count == 2
    assert stats.new_count == 2
    assert build_stats([]).average_mastery == 0.0


def test_stats_use_decayed_mastery(store, clock, seeded):
    view = KnowledgeGraphView(clock=clock)
    with store.transaction() as conn:
        stats = view.stats(conn, "u1")
        concepts = {c.concept.name: c for c in view.user_concepts(conn, "u1")}

    # Meiosis: 90 stored, 20 days old -> 0.75 -> 68
    assert concepts["Meiosis"].mastery_score == 68
    assert concepts["Meiosis"].stored_mastery_score == 90
    assert stats.total_concepts == 3
    assert stats.mastered_count == 1
    assert stats.learning_count == 1
    assert stats.new_count == 1


def test_graph_only_has_edges_between_user_concepts(store, clock, seeded):
    view = KnowledgeGraphView(clock=clock)
    with store.transaction() as conn:
        graph = view.graph(conn, "u1")
        empty = view.graph(conn, "someone-else")

    assert len(graph.nodes) == 3
    assert [(e.source, e.target) for e in graph.edges] == [(seeded["weak"], seeded["fresh"])]
    assert empty.nodes == [] and empty.edges == []


def test_concept_detail_lists_related_concepts(store, clock, seeded):
    view = KnowledgeGraphView(clock=clock)
    with store.transaction() as conn:
        detail = view.concept_detail(conn, "u1", seeded["fresh"])

    assert detail.concept.name == "Mitosis"
    assert detail.mastery == 90
    assert len(detail.related_concepts) == 1
    related = detail.related_concepts[0]
    assert related.concept.name == "ATP"
    assert related.direction == "incoming"
    assert related.mastery == 30


def test_concept_detail_for_unknown_concept(store, clock):
    view = KnowledgeGraphView(clock=clock)
    with store.transaction() as conn:
        with pytest.raises(NotFoundError):
            view.concept_detail(conn, "u1", "missing")


def test_insights(store, clock, seeded):
    view = KnowledgeGraphView(clock=clock)
    with store.transaction() as conn:
        insights = view.insights(conn, "u1")

    assert [c.name for c in insights.needs_review] == ["Meiosis", "ATP"]
    assert [c.name for c in insights.recent_progress] == ["Mitosis", "ATP"]
    assert [c.name for c in insights.weak_spots] == ["ATP"]
    assert insights.needs_review[0].days_since_last_seen == 20

    assert len(insights.cross_connections) == 1
    connection = insights.cross_connections[0]
    assert connection.name == "Mitosis"
    assert connection.loop_count == 2
    assert sorted(loop.title for loop in connection.loops) == ["Cells", "Energy"]
    assert insights.stats.total_concepts == 3
