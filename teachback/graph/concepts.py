"""
Concept store integration: links a loop's extracted concepts and relationships
to the global, deduplicated concept graph.
"""

import sqlite3
from typing import Dict, List, Optional

from teachback.store.models import KeyConcept, ExtractedRelationship
from teachback.store.queries import (
    ConceptQueries,
    LoopConceptQueries,
    RelationshipQueries,
    normalize_concept_name,
)
from teachback.shared.logging import get_logger

logger = get_logger(__name__)

__all__ = ["ConceptLinker", "normalize_concept_name"]


class ConceptLinker:
    """Single integration point between loops and the concept store."""

    def ensure_loop_concepts(
        self,
        conn: sqlite3.Connection,
        loop_id: str,
        concepts: List[KeyConcept],
        relationships: Optional[List[ExtractedRelationship]] = None
    ) -> Dict[str, str]:
        """
        Upsert concepts, loop links and relationship edges for one loop.

        Idempotent: re-running with the same input creates no duplicate rows and
        leaves existing relationship strength untouched. Edges whose endpoints
        do not resolve to one of `concepts` are skipped.

        Returns:
            normalized concept name -> concept id
        """
        concept_ids: Dict[str, str] = {}

        for key_concept in concepts:
            if not key_concept.concept.strip():
                continue
            concept = ConceptQueries.upsert(conn, key_concept.concept, description=key_concept.explanation)
            concept_ids[concept.normalized_name] = concept.id
            LoopConceptQueries.link(
                conn, loop_id, concept.id, key_concept.importance, key_concept.explanation
            )

        skipped = 0
        for rel in relationships or []:
            from_id = concept_ids.get(normalize_concept_name(rel.from_concept))
            to_id = concept_ids.get(normalize_concept_name(rel.to_concept))
            if from_id and to_id:
                RelationshipQueries.ensure(conn, from_id, to_id, rel.type, 1.0)
            else:
                skipped += 1

        if skipped:
            logger.debug(
                f"Skipped {skipped} relationships with unresolved endpoints",
                extra={"loop_id": loop_id}
            )

        return concept_ids
