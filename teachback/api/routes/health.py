"""
Health check endpoint.
"""

import time
import sqlite3
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from teachback.api.dependencies import StoreDep
from teachback.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])

# Track startup time for uptime
_start_time: Optional[float] = None


def set_start_time(t: float):
    """Set application start time."""
    global _start_time
    _start_time = t


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    store_connected: bool
    schema_version: int
    uptime_seconds: float


@router.get("/health", response_model=HealthResponse)
async def health_check(store: StoreDep):
    """
    Service health check.
    Returns status, store reachability, schema version and uptime.
    """
    store_connected = False
    schema_version = 0
    try:
        with store.transaction() as conn:
            schema_version = conn.execute("PRAGMA user_version").fetchone()[0]
        store_connected = True
    except sqlite3.Error as e:
        logger.warning(f"Health check could not reach store: {str(e)}")

    uptime_seconds = 0.0
    if _start_time:
        uptime_seconds = round(time.time() - _start_time, 2)

    return HealthResponse(
        status="healthy" if store_connected else "degraded",
        store_connected=store_connected,
        schema_version=schema_version,
        uptime_seconds=uptime_seconds,
    )
