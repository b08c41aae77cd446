"""
Socratic dialogue generation: guiding questions and replies that judge whether
the learner has addressed the concept currently under discussion.
"""

from dataclasses import dataclass
from typing import List, Optional

from teachback.store.models import KeyConcept, SocraticMessage
from teachback.store.queries import normalize_concept_name
from teachback.shared.llm import LLMClient, LLMError
from teachback.shared.config import settings
from teachback.shared.tokens import truncate_to_tokens
from teachback.shared.logging import get_logger

logger = get_logger(__name__)

ALL_ADDRESSED_QUESTION = "Great work! You've addressed all the gaps. Ready to explain again?"
ALL_ADDRESSED_REPLY = (
    "Excellent! You've shown you understand every concept we were working on. "
    "You're ready for another attempt at explaining the full material!"
)
FALLBACK_QUESTION = "What do you think the main idea here is?"
FALLBACK_REPLY = "Interesting. Can you tell me more about that?"

STAGE_GUIDANCE = {
    "start": "This is the first question. Be welcoming but get right to it.",
    "probe": "They gave a partial answer. Probe deeper on the same concept.",
    "continue": "Continue the dialogue naturally.",
}

QUESTION_PROMPT = """You are a Socratic tutor helping someone understand material they've been studying.

SOURCE MATERIAL:
\"\"\"
{source}
\"\"\"

CONCEPTS THEY MISSED:
{remaining}

CONCEPTS ALREADY ADDRESSED:
{addressed}

Ask ONE concise question (1-2 sentences) that helps them discover the FIRST missed
concept themselves. Don't lecture and don't give away the answer.
{stage}

Return JSON: {{"question": "..."}}"""

RESPONSE_PROMPT = """You are a Socratic tutor in an ongoing dialogue.

SOURCE MATERIAL:
\"\"\"
{source}
\"\"\"

KEY CONCEPTS FROM SOURCE:
{key_concepts}

CONCEPTS WE'RE WORKING ON:
{remaining}

CONVERSATION SO FAR:
{history}

Decide whether the learner's latest message demonstrates understanding of the FIRST
concept we're working on. If yes, acknowledge briefly and ask about the next one.
If partially, probe deeper. If not, redirect with a simpler question or hint.
Never lecture; keep it under 3 sentences.

Return JSON:
{{"message": "...", "addressed": true, "current_concept": "exact name from the list above"}}"""


@dataclass
class SocraticReply:
    message: str
    addressed_concept: Optional[str] = None


def remaining_concepts(targets: List[str], addressed: List[str]) -> List[str]:
    done = {normalize_concept_name(c) for c in addressed}
    return [c for c in targets if normalize_concept_name(c) not in done]


class SocraticDialogue:
    """Generates Socratic questions and judged replies."""

    def __init__(self, llm: Optional[LLMClient] = None, max_source_tokens: Optional[int] = None):
        self.llm = llm or LLMClient(model=settings.llm.dialogue_model, temperature=0.7)
        self.max_source_tokens = max_source_tokens or settings.llm.dialogue_source_tokens

    async def generate_question(
        self,
        source_text: str,
        missed_concepts: List[str],
        addressed_concepts: List[str],
        stage: str = "start"
    ) -> str:
        remaining = remaining_concepts(missed_concepts, addressed_concepts)
        if not remaining:
            return ALL_ADDRESSED_QUESTION

        system_prompt = QUESTION_PROMPT.format(
            source=truncate_to_tokens(source_text, self.max_source_tokens),
            remaining="\n".join(f"{i + 1}. {c}" for i, c in enumerate(remaining)),
            addressed=", ".join(addressed_concepts) or "None yet",
            stage=STAGE_GUIDANCE.get(stage, STAGE_GUIDANCE["continue"]),
        )

        try:
            response = await self.llm.get_json_completion([], system_prompt=system_prompt, max_tokens=200)
        except LLMError as e:
            logger.warning(f"Socratic question generation failed: {str(e)}")
            return FALLBACK_QUESTION

        return str(response.get("question") or "").strip() or FALLBACK_QUESTION

    async def generate_response(
        self,
        source_text: str,
        key_concepts: List[KeyConcept],
        target_concepts: List[str],
        addressed_concepts: List[str],
        history: List[SocraticMessage],
        user_message: str
    ) -> SocraticReply:
        """
        Reply to the learner. `addressed_concept`, when set, is the concept the
        model judged newly demonstrated; the caller validates it against targets.
        """
        remaining = remaining_concepts(target_concepts, addressed_concepts)
        if not remaining:
            return SocraticReply(message=ALL_ADDRESSED_REPLY)

        transcript = "\n".join(f"{m.role.upper()}: {m.content}" for m in history)
        system_prompt = RESPONSE_PROMPT.format(
            source=truncate_to_tokens(source_text, self.max_source_tokens),
            key_concepts="\n".join(f"- {c.concept}: {c.explanation}" for c in key_concepts) or "- None",
            remaining="\n".join(f"{i + 1}. {c}" for i, c in enumerate(remaining)),
            history=transcript or "(none)",
        )
        messages = [{"role": "user", "content": user_message}]

        try:
            response = await self.llm.get_json_completion(messages, system_prompt=system_prompt, max_tokens=300)
        except LLMError as e:
            logger.warning(f"Socratic response generation failed: {str(e)}")
            return SocraticReply(message=FALLBACK_REPLY)

        message = str(response.get("message") or "").strip() or FALLBACK_REPLY
        concept = response.get("current_concept") or response.get("currentConcept")
        if response.get("addressed") is True and concept:
            return SocraticReply(message=message, addressed_concept=str(concept).strip())
        return SocraticReply(message=message)
