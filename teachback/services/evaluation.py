"""
Explanation evaluation and prior-knowledge assessment.

The engine never judges correctness itself; it consumes the structured
judgement returned here.
"""

from typing import List, Dict, Any, Optional

from pydantic import ValidationError

from teachback.store.models import (
    Evaluation,
    TTSScript,
    PriorKnowledgeAnalysis,
    Misconception,
    AttemptType,
    Persona,
    Precision,
)
from teachback.services.personas import get_persona
from teachback.shared.llm import LLMClient, LLMError
from teachback.shared.config import settings
from teachback.shared.exceptions import EvaluationError
from teachback.shared.tokens import truncate_to_tokens
from teachback.shared.logging import get_logger

logger = get_logger(__name__)

PRECISION_GUIDANCE = {
    Precision.ESSENTIAL: """PRECISION MODE: ESSENTIAL
Be lenient. Count a concept as covered if they got the gist.
Don't penalize missing dates, numbers or names; accept paraphrasing.""",
    Precision.BALANCED: """PRECISION MODE: BALANCED
Balance conceptual understanding and specific details.""",
    Precision.PRECISE: """PRECISION MODE: PRECISE
Be strict. Dates, numbers, names and terminology must be accurate.
Vague or partial explanations don't count as covered.""",
}

ATTEMPT_GUIDANCE = {
    AttemptType.SIMPLIFY_CHALLENGE: """SPECIAL MODE: SIMPLIFY CHALLENGE
The learner is explaining as if to a 10-year-old. Reward plain language, analogies
and examples; penalize jargon even when technically accurate.""",
    AttemptType.QUICK_REVIEW: """SPECIAL MODE: QUICK REVIEW
This is a spaced-repetition review. Focus on whether the core ideas stuck.""",
}

EVALUATION_PROMPT = """{persona_prefix}

You are evaluating a learner's spoken explanation.

KEY CONCEPTS THEY SHOULD COVER:
{concepts}

ORIGINAL SOURCE TEXT (for context):
\"\"\"
{source}
\"\"\"

{precision}
{attempt_guidance}
{prior_knowledge}

Use the key concept names exactly as listed in covered_points and missed_points.
coverage = concepts mentioned / total; accuracy = correct / mentioned.

Return JSON:
{{
  "key_points": ["..."],
  "covered_points": ["..."],
  "missed_points": ["..."],
  "coverage": 0.0,
  "accuracy": 0.0,
  "feedback": "2-3 sentences",
  "tts_script": {{"intro": "", "score_announcement": "", "covered_summary": "", "missed_summary": "", "closing": ""}}
}}"""

PRIOR_KNOWLEDGE_PROMPT = """You are assessing what a learner already knows BEFORE studying the material.

TARGET CONCEPTS:
{concepts}

SOURCE TEXT (for reference):
\"\"\"
{source}
\"\"\"

Classify each target concept as known, partial or unknown, list misconceptions with
corrections, suggest focus areas, and give a confidence score from 0 (no prior
knowledge) to 100 (already understands everything). Be encouraging.

Return JSON:
{{
  "known_concepts": [],
  "partial_concepts": [],
  "unknown_concepts": [],
  "misconceptions": [{{"claim": "", "correction": ""}}],
  "focus_areas": [],
  "confidence_score": 0,
  "feedback": ""
}}"""

FALLBACK_PRIOR_FEEDBACK = "Let's start learning! I'll help you understand all these concepts."


def _numbered(items: List[str]) -> str:
    return "\n".join(f"{i + 1}. {item}" for i, item in enumerate(items)) or "- None"


def _bulleted(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items) or "- None"


def _clamp_fraction(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, number))


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    """First present key; accepts snake_case and camelCase output."""
    for key in keys:
        if key in data:
            return data[key]
    return None


class ExplanationEvaluator:
    """Scores explanations against a loop's key concepts."""

    def __init__(self, llm: Optional[LLMClient] = None, max_source_tokens: Optional[int] = None):
        self.llm = llm or LLMClient(model=settings.llm.evaluation_model, temperature=0.5)
        self.max_source_tokens = max_source_tokens or settings.llm.evaluation_source_tokens

    def _prior_knowledge_context(self, prior: Optional[PriorKnowledgeAnalysis]) -> str:
        if prior is None:
            return ""
        misconceptions = [f'"{m.claim}" (correction: {m.correction})' for m in prior.misconceptions]
        return (
            "SCORING CONTEXT:\n"
            f"Already known before reading:\n{_bulleted(prior.known_concepts)}\n"
            f"Told to focus on:\n{_bulleted(prior.focus_areas)}\n"
            f"Misconceptions to check:\n{_bulleted(misconceptions)}\n"
            "Don't penalize omitting known concepts. Missing focus concepts matters more. "
            "Penalize repeated misconceptions."
        )

    async def evaluate_with_concepts(
        self,
        source_text: str,
        concept_names: List[str],
        transcript: str,
        persona: Persona = Persona.COACH,
        attempt_type: AttemptType = AttemptType.FULL_EXPLANATION,
        precision: Precision = Precision.BALANCED,
        prior_knowledge: Optional[PriorKnowledgeAnalysis] = None
    ) -> Evaluation:
        """
        Evaluate one explanation.

        Raises:
            EvaluationError if the provider fails or its output is unusable
        """
        system_prompt = EVALUATION_PROMPT.format(
            persona_prefix=get_persona(persona).prompt_prefix,
            concepts=_numbered(concept_names),
            source=truncate_to_tokens(source_text, self.max_source_tokens),
            precision=PRECISION_GUIDANCE[Precision(precision)],
            attempt_guidance=ATTEMPT_GUIDANCE.get(AttemptType(attempt_type), ""),
            prior_knowledge=self._prior_knowledge_context(prior_knowledge),
        )
        messages = [{"role": "user", "content": f'Learner\'s explanation:\n"""\n{transcript}\n"""'}]

        try:
            response = await self.llm.get_json_completion(messages, system_prompt=system_prompt)
        except LLMError as e:
            raise EvaluationError(f"Evaluation service failed: {str(e)}") from e

        if "coverage" not in response and "covered_points" not in response:
            raise EvaluationError("Evaluation response is missing coverage data")

        tts = _pick(response, "tts_script", "ttsScript")
        try:
            tts_script = TTSScript(**tts) if isinstance(tts, dict) else TTSScript()
        except ValidationError:
            tts_script = TTSScript()

        return Evaluation(
            key_points=_string_list(_pick(response, "key_points", "keyPoints")) or list(concept_names),
            covered_points=_string_list(_pick(response, "covered_points", "coveredPoints")),
            missed_points=_string_list(_pick(response, "missed_points", "missedPoints")),
            coverage=_clamp_fraction(response.get("coverage")),
            accuracy=_clamp_fraction(response.get("accuracy")),
            feedback=str(response.get("feedback") or ""),
            tts_script=tts_script,
        )

    async def assess_prior_knowledge(
        self,
        source_text: str,
        concept_names: List[str],
        transcript: str
    ) -> PriorKnowledgeAnalysis:
        """Assess prior knowledge; unusable output degrades to 'everything unknown'."""
        fallback = PriorKnowledgeAnalysis(
            unknown_concepts=list(concept_names),
            focus_areas=list(concept_names),
            confidence_score=0,
            feedback=FALLBACK_PRIOR_FEEDBACK,
        )

        system_prompt = PRIOR_KNOWLEDGE_PROMPT.format(
            concepts=_numbered(concept_names),
            source=truncate_to_tokens(source_text, self.max_source_tokens),
        )
        messages = [{
            "role": "user",
            "content": f'What the learner says they already know:\n"""\n{transcript}\n"""'
        }]

        try:
            response = await self.llm.get_json_completion(messages, system_prompt=system_prompt)
        except LLMError as e:
            logger.warning(f"Prior knowledge assessment failed, using fallback: {str(e)}")
            return fallback

        misconceptions = []
        for item in _pick(response, "misconceptions") or []:
            if isinstance(item, dict) and item.get("claim"):
                misconceptions.append(Misconception(
                    claim=str(item["claim"]),
                    correction=str(item.get("correction") or "")
                ))

        try:
            score = int(round(float(_pick(response, "confidence_score", "confidenceScore") or 0)))
        except (TypeError, ValueError):
            score = 0

        return PriorKnowledgeAnalysis(
            known_concepts=_string_list(_pick(response, "known_concepts", "knownConcepts")),
            partial_concepts=_string_list(_pick(response, "partial_concepts", "partialConcepts")),
            unknown_concepts=_string_list(_pick(response, "unknown_concepts", "unknownConcepts")),
            misconceptions=misconceptions,
            focus_areas=_string_list(_pick(response, "focus_areas", "focusAreas")),
            confidence_score=max(0, min(100, score)),
            feedback=str(response.get("feedback") or FALLBACK_PRIOR_FEEDBACK),
        )
