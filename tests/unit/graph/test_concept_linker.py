"""
Tests for linking loop concepts into the shared concept graph.
"""

from teachback.graph.concepts import ConceptLinker, normalize_concept_name
from teachback.store.models import (
    ConceptImportance,
    ExtractedRelationship,
    KeyConcept,
    LoopPhase,
    Precision,
    RelationshipType,
    SourceType,
)
from teachback.store.queries import (
    LoopConceptQueries,
    LoopQueries,
    RelationshipQueries,
)

from conftest import KEY_CONCEPTS, RELATIONSHIPS, SOURCE_TEXT


def _loop(conn, user_id="u1"):
    return LoopQueries.create(
        conn, user_id, SOURCE_TEXT, SourceType.ARTICLE, Precision.BALANCED, LoopPhase.FIRST_ATTEMPT
    )


def _count(conn, table):
    return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def test_normalization_is_case_and_whitespace_insensitive():
    assert normalize_concept_name("  Natural Selection ") == "natural selection"


def test_ensure_is_idempotent(store):
    linker = ConceptLinker()
    with store.transaction() as conn:
        loop = _loop(conn)
        first = linker.ensure_loop_concepts(conn, loop.id, KEY_CONCEPTS, RELATIONSHIPS)
        second = linker.ensure_loop_concepts(conn, loop.id, KEY_CONCEPTS, RELATIONSHIPS)

        assert first == second
        assert _count(conn, "concepts") == 3
        assert _count(conn, "loop_concepts") == 3
        assert _count(conn, "concept_relationships") == 2
        strengths = [r["strength"] for r in conn.execute("SELECT strength FROM concept_relationships")]
        assert strengths == [1.0, 1.0]


def test_concepts_are_shared_across_loops(store):
    linker = ConceptLinker()
    with store.transaction() as conn:
        first = _loop(conn, "u1")
        second = _loop(conn, "u2")
        ids_a = linker.ensure_loop_concepts(conn, first.id, [KeyConcept(concept="Photosynthesis")])
        ids_b = linker.ensure_loop_concepts(conn, second.id, [KeyConcept(concept="  photosynthesis ")])

        assert ids_a == ids_b
        assert _count(conn, "concepts") == 1
        assert len(LoopConceptQueries.list_for_loop(conn, first.id)) == 1
        assert len(LoopConceptQueries.list_for_loop(conn, second.id)) == 1


def test_relink_updates_importance_without_resetting_demonstration(store):
    linker = ConceptLinker()
    with store.transaction() as conn:
        loop = _loop(conn)
        ids = linker.ensure_loop_concepts(conn, loop.id, [KeyConcept(concept="Osmosis")])
        LoopConceptQueries.mark_demonstrated(conn, loop.id, ids["osmosis"], LoopPhase.SECOND_ATTEMPT)

        linker.ensure_loop_concepts(
            conn, loop.id, [KeyConcept(concept="Osmosis", importance=ConceptImportance.CORE)]
        )
        link = LoopConceptQueries.list_for_loop(conn, loop.id)[0]

    assert link.importance == ConceptImportance.CORE
    assert link.was_demonstrated is True
    assert link.demonstrated_in_phase == LoopPhase.SECOND_ATTEMPT


def test_mark_demonstrated_only_once(store):
    linker = ConceptLinker()
    with store.transaction() as conn:
        loop = _loop(conn)
        ids = linker.ensure_loop_concepts(conn, loop.id, [KeyConcept(concept="Osmosis")])
        assert LoopConceptQueries.mark_demonstrated(conn, loop.id, ids["osmosis"], LoopPhase.LEARNING) is True
        assert LoopConceptQueries.mark_demonstrated(conn, loop.id, ids["osmosis"], LoopPhase.SIMPLIFY) is False
        link = LoopConceptQueries.list_for_loop(conn, loop.id)[0]

    assert link.demonstrated_in_phase == LoopPhase.LEARNING


def test_unresolved_relationships_and_blank_names_are_skipped(store):
    linker = ConceptLinker()
    relationships = [
        ExtractedRelationship(from_concept="Osmosis", to_concept="Diffusion", type=RelationshipType.EXEMPLIFIES),
        ExtractedRelationship(from_concept="Osmosis", to_concept="Membranes", type=RelationshipType.PREREQUISITE),
    ]
    with store.transaction() as conn:
        loop = _loop(conn)
        ids = linker.ensure_loop_concepts(
            conn, loop.id,
            [KeyConcept(concept="Osmosis"), KeyConcept(concept="Diffusion"), KeyConcept(concept="   ")],
            relationships,
        )

        assert set(ids) == {"osmosis", "diffusion"}
        assert _count(conn, "concept_relationships") == 1
        edge = RelationshipQueries.get(conn, ids["osmosis"], ids["diffusion"], RelationshipType.EXEMPLIFIES)
        assert edge.strength == 1.0


def test_increment_creates_then_accumulates(store):
    linker = ConceptLinker()
    with store.transaction() as conn:
        loop = _loop(conn)
        ids = linker.ensure_loop_concepts(conn, loop.id, [KeyConcept(concept="A"), KeyConcept(concept="B")])
        RelationshipQueries.increment_strength(conn, ids["a"], ids["b"], RelationshipType.CAUSES, 1.0)
        assert RelationshipQueries.get(conn, ids["a"], ids["b"], RelationshipType.CAUSES).strength == 1.0
        RelationshipQueries.increment_strength(conn, ids["a"], ids["b"], RelationshipType.CAUSES, 1.0)
        assert RelationshipQueries.get(conn, ids["a"], ids["b"], RelationshipType.CAUSES).strength == 2.0
        # A different type is a separate edge
        assert RelationshipQueries.get(conn, ids["a"], ids["b"], RelationshipType.ENABLES) is None
