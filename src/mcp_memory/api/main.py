"""
MCP Memory REST API
===================
Thin FastAPI wrapper over the memory service for HTTP clients.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Literal, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from prometheus_client import make_asgi_app

from mcp_memory import __version__
from mcp_memory.api.models import (
    BatchRequest,
    BatchValidationResponse,
    CreateMemoryRequest,
    DeleteResponse,
    HealthResponse,
    LinkRequest,
    LinkResponse,
    LinksResponse,
    LivenessResponse,
    ListResponse,
    MemoryResponse,
    ReadinessResponse,
    SearchRequest,
    SearchResponse,
    UpdateMemoryRequest,
    UnlinkResponse,
)
from mcp_memory.core.config import MemoryServerConfig, get_config
from mcp_memory.core.container import Container, build_container
from mcp_memory.core.exceptions import (
    MemoryNotFoundError,
    MemoryServerError,
    NotFoundError,
    RecoverableError,
    ValidationError,
    is_debug_mode,
)
from mcp_memory.core.memory_service import MemoryService
from mcp_memory.core.models import MemoryRecord


EXPORT_MEDIA_TYPES = {"jsonl": "application/x-ndjson", "json": "application/json"}


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_service(request: Request) -> MemoryService:
    return request.app.state.container.memory_service


async def _export_body(records: AsyncIterator[MemoryRecord], format: str) -> AsyncIterator[str]:
    if format == "json":
        yield '{"memories":['
        separator = ""
        async for record in records:
            yield separator + json.dumps(record.to_dict())
            separator = ","
        yield "]}"
        return
    async for record in records:
        yield json.dumps(record.to_dict()) + "\n"


def create_app(
    config: Optional[MemoryServerConfig] = None,
    container: Optional[Container] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    The container is started in the lifespan hook; a failure there aborts
    startup instead of serving in a degraded mode.
    """
    cfg = config or (container.config if container else get_config())
    container = container or build_container(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not container.started:
            logger.info("Starting memory service container...")
            try:
                await container.start()
            except MemoryServerError as e:
                logger.critical(f"Cannot start memory server: {e}")
                raise
        yield
        logger.info("Closing memory service container...")
        await container.stop()

    app = FastAPI(
        title="MCP Memory API",
        description="Semantic memory store for AI agents - REST API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.container = container

    @app.exception_handler(MemoryServerError)
    async def memory_server_exception_handler(request: Request, exc: MemoryServerError):
        """
        Centralized exception handler for all domain errors.
        Stack traces are included only in DEBUG mode.
        """
        if isinstance(exc, (ValidationError, NotFoundError)):
            logger.info(f"Rejected request {request.url.path}: {exc}")
        elif exc.recoverable:
            logger.warning(f"Recoverable error: {exc}")
        else:
            logger.error(f"Irrecoverable error: {exc}")

        if isinstance(exc, NotFoundError):
            status_code = 404
        elif isinstance(exc, ValidationError):
            status_code = 400
        elif isinstance(exc, RecoverableError):
            status_code = 503
        else:
            status_code = 500

        return JSONResponse(
            status_code=status_code,
            content=exc.to_dict(include_traceback=is_debug_mode()),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body") or "body"
            errors.append({
                "field": loc,
                "constraint": err.get("type", "invalid"),
                "message": err.get("msg", "invalid value"),
            })
        return JSONResponse(
            status_code=400,
            content={
                "error": "Request validation failed",
                "code": ValidationError.error_code,
                "category": ValidationError.category.value,
                "recoverable": False,
                "errors": errors,
            },
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.api.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount Prometheus metrics
    app.mount("/metrics", make_asgi_app())

    # --- Endpoints ---

    @app.get("/health", response_model=HealthResponse)
    async def health(service: MemoryService = Depends(get_service)):
        checks = await service.check_ready()
        return {
            "status": "healthy" if all(checks.values()) else "degraded",
            "storage": checks["storage"],
            "embedding": checks["embedding"],
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/ready", response_model=ReadinessResponse, responses={503: {"model": ReadinessResponse}})
    async def ready(service: MemoryService = Depends(get_service)):
        """Readiness check: 503 until storage and the embedding provider respond."""
        checks = await service.check_ready()
        body = {
            "status": "ready" if all(checks.values()) else "not_ready",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if body["status"] != "ready":
            logger.warning(f"Readiness check failed: {checks}")
            return JSONResponse(status_code=503, content=body)
        return body

    @app.get("/live", response_model=LivenessResponse)
    async def live():
        """Liveness check; touches no dependency."""
        return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/stats")
    async def stats(
        service: MemoryService = Depends(get_service),
        container: Container = Depends(get_container),
    ):
        data = await service.stats()
        pool = getattr(container.store, "pool", None)
        if pool is not None:
            data["pool"] = pool.stats()
        return data

    @app.post("/memories", response_model=MemoryResponse, status_code=201)
    async def create_memory(req: CreateMemoryRequest, service: MemoryService = Depends(get_service)):
        """Store a new memory."""
        record = await service.create(
            req.type,
            req.content,
            source=req.source,
            tags=req.tags,
            confidence=req.confidence,
            metadata=req.metadata,
        )
        return record.to_dict()

    @app.get("/memories", response_model=ListResponse)
    async def list_memories(
        type: Optional[str] = None,
        tags: Optional[List[str]] = Query(default=None),
        created_after: Optional[str] = None,
        created_before: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: str = "created_at",
        order: str = "desc",
        service: MemoryService = Depends(get_service),
    ):
        """List memories; `tags` may repeat or be comma-separated."""
        if tags:
            tags = [t for raw in tags for t in raw.split(",")]
        result = await service.list(
            type=type,
            tags=tags,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            offset=offset,
            order_by=order_by,
            order=order,
        )
        return result.to_dict()

    @app.post("/memories/search", response_model=SearchResponse)
    async def search_memories(req: SearchRequest, service: MemoryService = Depends(get_service)):
        """Semantic similarity search."""
        result = await service.search(
            req.query,
            type=req.type,
            tags=req.tags,
            limit=req.limit,
            threshold=req.threshold,
        )
        return result.to_dict()

    @app.post("/memories/batch")
    async def batch_memories(req: BatchRequest, service: MemoryService = Depends(get_service)):
        results = await service.batch([op.model_dump(exclude_none=True) for op in req.operations])
        return {
            "results": results,
            "succeeded": sum(1 for r in results if r["success"]),
            "failed": sum(1 for r in results if not r["success"]),
        }

    @app.post("/memories/batch/validate", response_model=BatchValidationResponse)
    async def validate_batch(req: BatchRequest, service: MemoryService = Depends(get_service)):
        """Check a batch without executing it."""
        errors = service.validate_batch([op.model_dump(exclude_none=True) for op in req.operations])
        return {"valid": not errors, "errors": errors, "total": len(req.operations)}

    @app.get("/memories/export")
    async def export_memories(
        type: Optional[str] = None,
        tags: Optional[List[str]] = Query(default=None),
        created_after: Optional[str] = None,
        created_before: Optional[str] = None,
        format: Literal["jsonl", "json"] = "jsonl",
        service: MemoryService = Depends(get_service),
    ):
        """Stream every matching memory, oldest first, as JSON lines or one JSON document."""
        if tags:
            tags = [t for raw in tags for t in raw.split(",")]
        records = service.export(
            type=type, tags=tags, created_after=created_after, created_before=created_before
        )
        logger.info(f"Starting export (format={format}, type={type}, tags={tags})")
        return StreamingResponse(
            _export_body(records, format),
            media_type=EXPORT_MEDIA_TYPES[format],
            headers={"Content-Disposition": f'attachment; filename="memories.{format}"'},
        )

    @app.get("/memories/{memory_id}", response_model=MemoryResponse)
    async def get_memory(memory_id: str, service: MemoryService = Depends(get_service)):
        record = await service.get_by_id(memory_id)
        if record is None:
            raise MemoryNotFoundError(memory_id)
        return record.to_dict()

    @app.patch("/memories/{memory_id}", response_model=MemoryResponse)
    async def update_memory(
        memory_id: str,
        req: UpdateMemoryRequest,
        service: MemoryService = Depends(get_service),
    ):
        record = await service.update(memory_id, **req.model_dump(exclude_none=True))
        return record.to_dict()

    @app.delete("/memories/{memory_id}", response_model=DeleteResponse)
    async def delete_memory(memory_id: str, service: MemoryService = Depends(get_service)):
        await service.delete(memory_id)
        return {"ok": True, "deleted_id": memory_id}

    @app.get("/memories/{memory_id}/links", response_model=LinksResponse)
    async def get_links(memory_id: str, service: MemoryService = Depends(get_service)):
        links = await service.links(memory_id)
        return {"links": [link.to_dict() for link in links], "total": len(links)}

    @app.post("/memories/{memory_id}/links", response_model=LinkResponse, status_code=201)
    async def create_link(
        memory_id: str,
        req: LinkRequest,
        service: MemoryService = Depends(get_service),
    ):
        link = await service.link(
            memory_id,
            req.target_id,
            req.relationship,
            strength=req.strength,
            metadata=req.metadata,
        )
        return link.to_dict()

    @app.delete("/memories/{memory_id}/links", response_model=UnlinkResponse)
    async def delete_link(
        memory_id: str,
        target_id: str = Query(..., min_length=1),
        relationship: str = Query(..., min_length=1),
        service: MemoryService = Depends(get_service),
    ):
        await service.unlink(memory_id, target_id, relationship)
        return {
            "deleted": True,
            "source_id": memory_id,
            "target_id": target_id,
            "relationship": relationship,
        }

    return app


def run(config: Optional[MemoryServerConfig] = None, host: Optional[str] = None, port: Optional[int] = None) -> None:
    import uvicorn

    cfg = config or get_config()
    uvicorn.run(
        create_app(cfg),
        host=host or cfg.api.host,
        port=port or cfg.api.port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
