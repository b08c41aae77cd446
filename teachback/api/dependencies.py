"""
FastAPI dependency injection for teachback services.
"""

from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request

from teachback.core.engine import LearningEngine
from teachback.store.database import LearningStore


def get_engine(request: Request) -> LearningEngine:
    """Get the LearningEngine built during lifespan startup."""
    return request.app.state.engine


def get_store(request: Request) -> LearningStore:
    """Get the LearningStore behind the engine."""
    return request.app.state.engine.store


def get_user_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> str:
    """Caller identity; authentication happens upstream of this service."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


EngineDep = Annotated[LearningEngine, Depends(get_engine)]
StoreDep = Annotated[LearningStore, Depends(get_store)]
UserIdDep = Annotated[str, Depends(get_user_id)]
