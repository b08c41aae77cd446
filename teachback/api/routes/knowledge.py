"""
Knowledge graph endpoints: the user's concept graph, mastery stats and insights.
"""

from typing import List

from fastapi import APIRouter

from teachback.api.dependencies import EngineDep, UserIdDep
from teachback.graph.view import (
    KnowledgeGraph,
    KnowledgeStats,
    KnowledgeInsights,
    ConceptDetail,
    UserConceptView,
)

router = APIRouter(prefix="/api/knowledge", tags=["knowledge"])


@router.get("/graph", response_model=KnowledgeGraph)
async def get_graph(engine: EngineDep, user_id: UserIdDep):
    return engine.get_knowledge_graph(user_id)


@router.get("/stats", response_model=KnowledgeStats)
async def get_stats(engine: EngineDep, user_id: UserIdDep):
    return engine.get_knowledge_stats(user_id)


@router.get("/concepts", response_model=List[UserConceptView])
async def list_concepts(engine: EngineDep, user_id: UserIdDep):
    return engine.list_user_concepts(user_id)


@router.get("/concepts/{concept_id}", response_model=ConceptDetail)
async def get_concept(concept_id: str, engine: EngineDep, user_id: UserIdDep):
    return engine.get_concept_detail(user_id, concept_id)


@router.get("/insights", response_model=KnowledgeInsights)
async def get_insights(engine: EngineDep, user_id: UserIdDep):
    return engine.get_insights(user_id)
