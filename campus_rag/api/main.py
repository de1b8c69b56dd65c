"""
HTTP surface over the retrieval core.
"""

from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..core.config import VERSION, load_settings
from ..core.context import RAGContext, build_context
from ..core.db import health_check
from ..core.errors import CollaboratorUnavailableError, ConfigurationError, EmptyInputError, QueryTooLongError
from ..core.lifecycle import DAY_MS
from ..util.logging import logger
from .schemas import (
    AnswerRequest,
    AnswerResponse,
    DeleteResponse,
    ErrorResponse,
    EvictRequest,
    EvictResponse,
    HealthResponse,
    KnowledgeCreateRequest,
    KnowledgeResponse,
    KnowledgeUpdateRequest,
    StatsResponse,
)


def _error(status_code: int, error_type: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error_type=error_type, message=message).model_dump()
    )


def get_rag(request: Request) -> RAGContext:
    return request.app.state.rag


def create_app(context_factory: Optional[Callable[[], RAGContext]] = None, start_worker: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        context_factory: Returns the RAGContext to serve; defaults to
            build_context(load_settings())
        start_worker: Start the scheduler worker inside the lifespan
    """
    factory = context_factory or (lambda: build_context(load_settings()))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rag = factory()
        await rag.startup(start_worker=start_worker)
        app.state.rag = rag
        try:
            yield
        finally:
            await rag.shutdown()

    app = FastAPI(
        title="Campus RAG API",
        version=VERSION,
        description="Confidence-gated, self-learning retrieval for student questions",
        lifespan=lifespan
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = [f"{'.'.join(str(p) for p in err['loc'][1:])}: {err['msg']}" for err in exc.errors()]
        return _error(400, "VALIDATION_ERROR", "; ".join(messages))

    @app.exception_handler(EmptyInputError)
    async def empty_input_handler(request: Request, exc: EmptyInputError):
        return _error(400, "EMPTY_INPUT", str(exc))

    @app.exception_handler(QueryTooLongError)
    async def query_too_long_handler(request: Request, exc: QueryTooLongError):
        return _error(413, "QUERY_TOO_LONG", str(exc))

    @app.exception_handler(CollaboratorUnavailableError)
    async def collaborator_handler(request: Request, exc: CollaboratorUnavailableError):
        logger.error(f"Collaborator failure surfaced to caller: {exc}")
        return _error(503, "COLLABORATOR_UNAVAILABLE", str(exc))

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error: {exc}")
        return _error(500, "CONFIGURATION_ERROR", str(exc))

    @app.get("/health", response_model=HealthResponse)
    def health_check_endpoint(rag: RAGContext = Depends(get_rag)):
        """Check system health."""
        db_health = health_check(rag.settings.db_path)
        return HealthResponse(
            status="healthy" if db_health else "unhealthy",
            version=VERSION,
            db_health=db_health,
            record_count=rag.store.count(),
            scheduler=rag.scheduler.get_status()
        )

    @app.post("/answer", response_model=AnswerResponse)
    async def answer_endpoint(request: AnswerRequest, rag: RAGContext = Depends(get_rag)):
        result = await rag.orchestrator.answer(
            request.query,
            user_id=request.user_id,
            previous_answer=request.previous_answer,
            include_debug=request.include_debug
        )
        return AnswerResponse(**result.to_dict())

    # Fixed paths are declared before /knowledge/{record_id}
    @app.get("/knowledge/stats", response_model=StatsResponse)
    def stats_endpoint(rag: RAGContext = Depends(get_rag)):
        return StatsResponse(**rag.lifecycle.get_stats())

    @app.post("/knowledge/evict", response_model=EvictResponse)
    async def evict_endpoint(request: Optional[EvictRequest] = None, rag: RAGContext = Depends(get_rag)):
        max_age_ms = None
        if request is not None and request.max_age_days is not None:
            max_age_ms = request.max_age_days * DAY_MS
        report = await rag.lifecycle.evict_stale(max_age_ms)
        return EvictResponse(
            scanned=report.scanned,
            deleted=report.deleted,
            retained=report.retained,
            errors=report.errors
        )

    @app.post("/knowledge", response_model=KnowledgeResponse)
    async def create_knowledge_endpoint(request: KnowledgeCreateRequest, rag: RAGContext = Depends(get_rag)):
        record = await rag.lifecycle.add_knowledge(
            request.text,
            source=request.source,
            category=request.category,
            title=request.title
        )
        return KnowledgeResponse(**record.to_dict())

    @app.put("/knowledge/{record_id}", response_model=KnowledgeResponse)
    async def update_knowledge_endpoint(record_id: str, request: KnowledgeUpdateRequest,
                                        rag: RAGContext = Depends(get_rag)):
        record = await rag.lifecycle.update_knowledge(record_id, request.text, request.reason)
        if record is None:
            raise HTTPException(status_code=404, detail="Knowledge record not found")
        return KnowledgeResponse(**record.to_dict())

    @app.delete("/knowledge/{record_id}", response_model=DeleteResponse)
    async def delete_knowledge_endpoint(record_id: str, rag: RAGContext = Depends(get_rag)):
        if not await rag.store.delete(record_id):
            raise HTTPException(status_code=404, detail="Knowledge record not found")
        return DeleteResponse(success=True, id=record_id)

    return app


app = create_app()
