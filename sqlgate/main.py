from __future__ import annotations

import logging
import threading
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .backends import DatabaseAdapter, create_adapter
from .core.config import Dialect, get_cached_settings
from .core.exceptions import GateError
from .core.models import (
    ErrorDetail,
    IdentifierRequest,
    IdentifierResponse,
    LimitRequest,
    LimitResponse,
    PlanRequest,
    PlanResponse,
    QueryRequest,
    QueryResponse,
    ValidateRequest,
    ValidateResponse,
)
from .gateway import SafetyGate

settings = get_cached_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="SQL Safety Gate", version="0.1.0")
gate = SafetyGate(settings, logger=logging.getLogger("sqlgate.gate"))

# One adapter (and pool) per backend, created on first use
_adapters_lock = threading.RLock()
_adapters: dict[str, DatabaseAdapter] = {}

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


# --- Structured Error Response ---

@app.exception_handler(GateError)
async def _gate_error_handler(request: Request, exc: GateError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": ErrorDetail(**exc.to_dict()).model_dump()},
    )


def get_adapter(name: str | None) -> DatabaseAdapter:
    """Adapter for a configured backend (default backend when name is None)."""
    descriptor = settings.get_backend(name)
    with _adapters_lock:
        adapter = _adapters.get(descriptor.name)
        if adapter is None:
            adapter = create_adapter(
                descriptor,
                logger=logging.getLogger(f"sqlgate.backends.{descriptor.name}"),
                fetch_size=settings.fetch_size,
            )
            _adapters[descriptor.name] = adapter
            logger.info(f"Adapter created for backend {descriptor.name} ({descriptor.dialect.value})")
        return adapter


def _dialect(name: str | None) -> Dialect | None:
    return Dialect(name) if name else None


@app.on_event("shutdown")
def _close_pools() -> None:
    with _adapters_lock:
        for adapter in _adapters.values():
            adapter.pool.close()
        _adapters.clear()


# --- API Endpoints ---

@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/validate", response_model=ValidateResponse)
def validate(request: ValidateRequest) -> ValidateResponse:
    """Validate a query without executing it. Invalid queries return 200 with errors."""
    result = gate.validate(request.query, _dialect(request.dialect))
    return ValidateResponse(**result.to_dict())


@app.post("/api/limit", response_model=LimitResponse)
def limit(request: LimitRequest) -> LimitResponse:
    outcome = gate.enforce_limit(request.query, request.max_rows, _dialect(request.dialect))
    return LimitResponse(query=outcome.query, limit_applied=outcome.limit_applied)


@app.post("/api/identifier", response_model=IdentifierResponse)
def identifier(request: IdentifierRequest) -> IdentifierResponse:
    return IdentifierResponse(identifier=gate.sanitize_identifier(request.identifier))


@app.post("/api/query", response_model=QueryResponse)
def query(request: QueryRequest) -> QueryResponse:
    """
    Validate, bound and execute a read-only query.

    - **query**: SQL text (SELECT / WITH / EXPLAIN / SHOW / DESCRIBE / DESC)
    - **backend**: Configured backend name (default backend when omitted)
    - **max_rows**: Row cap, clamped to the configured hard limit
    - **timeout_seconds**: Command timeout, clamped to the configured maximum
    """
    adapter = get_adapter(request.backend)
    logger.info(f"Query request for {adapter.descriptor.name}: {request.query[:100]}")
    outcome = gate.run(
        adapter,
        request.query,
        max_rows=request.max_rows,
        timeout=request.timeout_seconds,
    )
    return QueryResponse(**outcome.to_dict())


@app.post("/api/plan", response_model=PlanResponse)
def plan(request: PlanRequest) -> PlanResponse:
    adapter = get_adapter(request.backend)
    result = gate.explain(adapter, request.query)
    return PlanResponse(plan=result.plan, format=result.format, estimated_cost=result.estimated_cost)


# --- Catalog Endpoints ---

@app.get("/api/backends")
def list_backends() -> dict[str, Any]:
    """List configured backends (connection details without credentials)."""
    backends = [descriptor.public_info() for descriptor in settings.backends.values()]
    return {
        "backends": backends,
        "default": settings.default_backend,
        "count": len(backends),
    }


@app.get("/api/backends/{name}/databases")
def list_databases(name: str) -> dict[str, Any]:
    databases = get_adapter(name).list_databases()
    return {"databases": [vars(db) for db in databases], "count": len(databases)}


@app.get("/api/backends/{name}/tables")
def list_tables(
    name: str,
    database: str | None = Query(default=None, description="Database to inspect (SQL Server only)"),
    schema: str | None = Query(default=None, description="Schema filter"),
) -> dict[str, Any]:
    tables = get_adapter(name).list_tables(database=database, schema=schema)
    return {"tables": [vars(table) for table in tables], "count": len(tables)}


@app.get("/api/backends/{name}/tables/{table}")
def describe_table(
    name: str,
    table: str,
    schema: str | None = Query(default=None),
    database: str | None = Query(default=None),
) -> dict[str, Any]:
    return get_adapter(name).describe_table(table, schema=schema, database=database).to_dict()
