"""FastAPI application setup for DocChat."""

from __future__ import annotations

import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docchat.api import dependencies
from docchat.api.routes_admin import router as admin_router
from docchat.api.routes_ingest import router as ingest_router
from docchat.api.routes_query import router as query_router
from docchat.core.errors import MASKED_MESSAGE, DocChatError, ValidationError
from docchat.core.logging import configure_logging, get_logger
from docchat.core.metrics import REQUEST_COUNT, REQUEST_LATENCY

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="DocChat",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(query_router, prefix="/api", tags=["query"])
app.include_router(ingest_router, prefix="/ingest", tags=["ingest"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    start_time = time.perf_counter()
    endpoint = request.url.path
    try:
        response = await call_next(request)
    except Exception:
        REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status="500").inc()
        raise
    REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
    REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(time.perf_counter() - start_time)
    return response


def _error_message(exc: Exception, public_message: str) -> str:
    settings = dependencies.get_app_settings()
    return str(exc) if settings.expose_errors else public_message


@app.exception_handler(DocChatError)
async def handle_docchat_error(request: Request, exc: DocChatError) -> JSONResponse:
    if isinstance(exc, ValidationError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})
    logger.error("Request to %s failed: %s", request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": _error_message(exc, exc.public_message)})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": _error_message(exc, MASKED_MESSAGE)})


@app.on_event("startup")
async def startup() -> None:
    """Open the connection pool and make sure the schema exists."""
    pool = dependencies.get_pool()
    pool.open()
    await pool.ensure_schema()


@app.on_event("shutdown")
async def shutdown() -> None:
    await dependencies.shutdown()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}
