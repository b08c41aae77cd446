"""
Tests for ExplanationEvaluator.
"""

import pytest
from unittest.mock import AsyncMock

from teachback.services.evaluation import ExplanationEvaluator, FALLBACK_PRIOR_FEEDBACK
from teachback.shared.exceptions import EvaluationError
from teachback.shared.llm import LLMError
from teachback.store.models import AttemptType, Persona, PriorKnowledgeAnalysis, Precision

CONCEPTS = ["Supply and demand", "Elasticity"]


@pytest.fixture
def llm():
    return AsyncMock()


@pytest.fixture
def evaluator(llm, no_tokenizer):
    return ExplanationEvaluator(llm=llm, max_source_tokens=500)


@pytest.mark.asyncio
async def test_evaluation_is_parsed_and_clamped(evaluator, llm):
    llm.get_json_completion.return_value = {
        "covered_points": ["Supply and demand"],
        "missed_points": ["Elasticity"],
        "coverage": 1.4,
        "accuracy": -0.2,
        "feedback": "Solid start.",
        "tts_script": {"intro": "Hey!", "closing": "Bye"},
    }
    evaluation = await evaluator.evaluate_with_concepts("Markets...", CONCEPTS, "prices go up")

    assert evaluation.covered_points == ["Supply and demand"]
    assert evaluation.missed_points == ["Elasticity"]
    assert evaluation.coverage == 1.0
    assert evaluation.accuracy == 0.0
    assert evaluation.key_points == CONCEPTS
    assert evaluation.tts_script.intro == "Hey!"


@pytest.mark.asyncio
async def test_camel_case_output_is_accepted(evaluator, llm):
    llm.get_json_completion.return_value = {
        "coveredPoints": ["Elasticity"],
        "missedPoints": [],
        "coverage": 0.5,
        "accuracy": 0.9,
    }
    evaluation = await evaluator.evaluate_with_concepts("Markets...", CONCEPTS, "elastic")

    assert evaluation.covered_points == ["Elasticity"]
    assert evaluation.accuracy == 0.9


@pytest.mark.asyncio
async def test_provider_failure_raises(evaluator, llm):
    llm.get_json_completion.side_effect = LLMError("timeout")
    with pytest.raises(EvaluationError):
        await evaluator.evaluate_with_concepts("Markets...", CONCEPTS, "words")


@pytest.mark.asyncio
async def test_unusable_output_raises(evaluator, llm):
    llm.get_json_completion.return_value = {"feedback": "no numbers here"}
    with pytest.raises(EvaluationError):
        await evaluator.evaluate_with_concepts("Markets...", CONCEPTS, "words")


@pytest.mark.asyncio
async def test_prompt_carries_mode_persona_and_prior_knowledge(evaluator, llm):
    llm.get_json_completion.return_value = {"coverage": 0.5, "accuracy": 0.5}
    prior = PriorKnowledgeAnalysis(known_concepts=["Supply and demand"], focus_areas=["Elasticity"])

    await evaluator.evaluate_with_concepts(
        "Markets...", CONCEPTS, "words",
        persona=Persona.SERGEANT,
        attempt_type=AttemptType.SIMPLIFY_CHALLENGE,
        precision=Precision.PRECISE,
        prior_knowledge=prior,
    )
    system_prompt = llm.get_json_completion.call_args.kwargs["system_prompt"]

    assert "drill sergeant" in system_prompt.lower()
    assert "SIMPLIFY CHALLENGE" in system_prompt
    assert "PRECISION MODE: PRECISE" in system_prompt
    assert "Told to focus on:\n- Elasticity" in system_prompt


@pytest.mark.asyncio
async def test_prior_knowledge_assessment(evaluator, llm):
    llm.get_json_completion.return_value = {
        "knownConcepts": ["Supply and demand"],
        "unknownConcepts": ["Elasticity"],
        "misconceptions": [{"claim": "Prices never fall", "correction": "They do"}, {"correction": "no claim"}],
        "focusAreas": ["Elasticity"],
        "confidenceScore": 140,
        "feedback": "Good base.",
    }
    analysis = await evaluator.assess_prior_knowledge("Markets...", CONCEPTS, "I know prices")

    assert analysis.known_concepts == ["Supply and demand"]
    assert len(analysis.misconceptions) == 1
    assert analysis.confidence_score == 100
    assert analysis.feedback == "Good base."


@pytest.mark.asyncio
async def test_prior_knowledge_failure_degrades(evaluator, llm):
    llm.get_json_completion.side_effect = LLMError("bad json")
    analysis = await evaluator.assess_prior_knowledge("Markets...", CONCEPTS, "no idea")

    assert analysis.unknown_concepts == CONCEPTS
    assert analysis.confidence_score == 0
    assert analysis.feedback == FALLBACK_PRIOR_FEEDBACK
