"""
Concept and relationship extraction from loop source text.
Uses LLM with a JSON-constrained prompt; failures degrade to an empty result.
"""

import asyncio
import logging
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field

from teachback.store.models import (
    KeyConcept,
    ExtractedRelationship,
    ConceptImportance,
    RelationshipType,
    Precision,
)
from teachback.store.queries import normalize_concept_name
from teachback.shared.llm import LLMClient, LLMError
from teachback.shared.config import settings
from teachback.shared.exceptions import ExtractionError
from teachback.shared.tokens import truncate_to_tokens
from teachback.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)

PRECISION_INSTRUCTIONS = {
    Precision.ESSENTIAL: """PRECISION MODE: ESSENTIAL
Focus ONLY on the core underlying ideas.
- Skip specific dates, numbers, names and minor details
- Extract 3-6 high-level concepts that capture the essence
- Prioritize why and how over what and when""",
    Precision.BALANCED: """PRECISION MODE: BALANCED
Extract a mix of core concepts and supporting details.
- Include the main ideas and some important specifics
- Extract 5-10 concepts""",
    Precision.PRECISE: """PRECISION MODE: PRECISE
Every detail matters.
- Include specific dates, numbers, names and terminology
- Extract 8-12 concepts covering both big ideas and key details""",
}

SYSTEM_PROMPT = """Analyze the text and extract the key concepts someone should understand.
{precision_instructions}

For each concept:
- concept: a clear, concise name (3-7 words)
- explanation: what the concept means in context (1-2 sentences)
- importance: "core" (central), "supporting" (important context) or "detail" (nice to know)

Also identify directed relationships between the concepts you extracted.
Allowed relationship types: causes, enables, exemplifies, contrasts, prerequisite.

Return JSON:
{{
  "concepts": [{{"concept": "...", "explanation": "...", "importance": "core|supporting|detail"}}],
  "relationships": [{{"from": "concept name", "to": "concept name", "type": "causes"}}]
}}"""


@dataclass
class ExtractionResult:
    """
    Extracted concepts and relationships.

    `degraded` is True when the extraction service failed (as opposed to the
    source simply yielding no concepts).
    """
    concepts: List[KeyConcept] = field(default_factory=list)
    relationships: List[ExtractedRelationship] = field(default_factory=list)
    degraded: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.concepts


class ConceptExtractor:
    """Extract key concepts and their relationships from source text."""

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        max_source_tokens: Optional[int] = None,
        sleep=asyncio.sleep
    ):
        self.llm = llm or LLMClient(model=settings.llm.extraction_model, temperature=0.3)
        self.retries = retries if retries is not None else settings.loop.extraction_retries
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.loop.extraction_backoff_seconds
        )
        self.max_source_tokens = max_source_tokens or settings.llm.extraction_source_tokens
        self._sleep = sleep

    async def extract(self, text: str, precision: Precision = Precision.BALANCED) -> ExtractionResult:
        """
        Extract concepts, retrying with linear backoff.

        Never raises: exhaustion returns an empty result.
        """
        precision = Precision(precision)
        system_prompt = SYSTEM_PROMPT.format(precision_instructions=PRECISION_INSTRUCTIONS[precision])
        messages = [{
            "role": "user",
            "content": f'Text to analyze:\n"""\n{truncate_to_tokens(text, self.max_source_tokens)}\n"""'
        }]

        errors: List[str] = []
        service_failed = False

        for attempt in range(self.retries + 1):
            if attempt > 0:
                await self._sleep(self.backoff_seconds * attempt)

            try:
                response = await self.llm.get_json_completion(messages, system_prompt=system_prompt)
                result = self._parse_response(response)
            except (LLMError, ExtractionError) as e:
                logger.warning(f"Concept extraction attempt {attempt + 1} failed: {str(e)}")
                errors.append(str(e))
                service_failed = True
                continue

            if result.concepts:
                result.errors = errors
                return result

            errors.append("Extraction returned no concepts")
            service_failed = False

        reason = "service_failure" if service_failed else "no_concepts"
        log_with_context(
            logger, logging.WARNING, "Concept extraction exhausted retries, returning empty result",
            action="extract_concepts", degraded_reason=reason, attempts=self.retries + 1
        )
        return ExtractionResult(degraded=service_failed, errors=errors)

    def _parse_response(self, response: Dict[str, Any]) -> ExtractionResult:
        """Validate model output into typed concepts and relationships."""
        raw_concepts = response.get("concepts")
        if raw_concepts is None:
            raw_concepts = []
        if not isinstance(raw_concepts, list):
            raise ExtractionError("'concepts' is not a list")

        concepts: List[KeyConcept] = []
        seen = set()
        for item in raw_concepts:
            if not isinstance(item, dict):
                continue
            name = str(item.get("concept") or "").strip()
            if not name or normalize_concept_name(name) in seen:
                continue
            seen.add(normalize_concept_name(name))

            try:
                importance = ConceptImportance(str(item.get("importance", "")).lower())
            except ValueError:
                importance = ConceptImportance.SUPPORTING

            concepts.append(KeyConcept(
                concept=name,
                explanation=str(item.get("explanation") or "").strip(),
                importance=importance
            ))

        raw_relationships = response.get("relationships")
        if raw_relationships is None and isinstance(response.get("conceptMap"), dict):
            raw_relationships = response["conceptMap"].get("relationships")

        relationships: List[ExtractedRelationship] = []
        for item in raw_relationships if isinstance(raw_relationships, list) else []:
            if not isinstance(item, dict):
                continue
            source = str(item.get("from") or "").strip()
            target = str(item.get("to") or "").strip()
            if not source or not target:
                continue
            try:
                rel_type = RelationshipType(str(item.get("type", "")).lower())
            except ValueError:
                logger.debug(f"Dropping relationship with unknown type: {item.get('type')}")
                continue
            relationships.append(ExtractedRelationship(from_concept=source, to_concept=target, type=rel_type))

        return ExtractionResult(concepts=concepts, relationships=relationships)
