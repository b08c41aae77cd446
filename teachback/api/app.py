"""
teachback FastAPI application.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from teachback.api.routes import health, loops, knowledge
from teachback.api.middleware.rate_limit import RateLimitMiddleware
from teachback.core.engine import LearningEngine
from teachback.shared.config import settings
from teachback.shared.exceptions import (
    NotFoundError,
    AccessDeniedError,
    QuotaExceededError,
    EvaluationError,
    InvalidStateError,
)
from teachback.shared.llm import LLMError
from teachback.shared.logging import get_logger, setup_logging

logger = get_logger(__name__)


def _error(status_code: int, exc: Exception, **fields) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), **fields})


def register_exception_handlers(app: FastAPI):
    """Map the teachback exception hierarchy onto HTTP status codes."""

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _error(404, exc)

    @app.exception_handler(AccessDeniedError)
    async def access_denied(request: Request, exc: AccessDeniedError):
        return _error(403, exc)

    @app.exception_handler(QuotaExceededError)
    async def quota_exceeded(request: Request, exc: QuotaExceededError):
        return _error(
            429, exc,
            remaining=exc.remaining,
            limit=exc.limit,
            reset_at=exc.reset_at.isoformat() if exc.reset_at else None,
        )

    @app.exception_handler(InvalidStateError)
    async def invalid_state(request: Request, exc: InvalidStateError):
        return _error(409, exc)

    @app.exception_handler(EvaluationError)
    async def evaluation_failed(request: Request, exc: EvaluationError):
        logger.error(f"Evaluation failed: {str(exc)}", extra={"path": request.url.path})
        return _error(502, exc)

    @app.exception_handler(LLMError)
    async def llm_failed(request: Request, exc: LLMError):
        logger.error(f"LLM provider failed: {str(exc)}", extra={"path": request.url.path})
        return _error(502, exc)

    @app.exception_handler(ValueError)
    async def invalid_value(request: Request, exc: ValueError):
        return _error(422, exc)


def create_app(engine: Optional[LearningEngine] = None) -> FastAPI:
    """Create and configure FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup and shutdown."""
        logger.info("Starting teachback API")

        app.state.engine = engine or LearningEngine()
        health.set_start_time(time.time())

        logger.info("teachback API ready")
        yield

        logger.info("teachback API stopped")

    app = FastAPI(
        title="teachback",
        description="Teach-it-back learning loops: explain, get scored, close the gaps, review",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting (after CORS so CORS headers applied first)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(loops.router)
    app.include_router(knowledge.router)

    @app.get("/")
    async def root():
        return {"service": "teachback", "status": "running"}

    return app


app = create_app()


def main():
    """CLI entry point for uvicorn."""
    import uvicorn

    setup_logging()
    uvicorn.run(
        "teachback.api.app:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
