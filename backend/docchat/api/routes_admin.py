"""Administrative routes for DocChat."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from docchat.api.dependencies import get_pool
from docchat.core.metrics import INDEX_SIZE, metrics_response
from docchat.db.sqlite import ConnectionPool
from docchat.models.dto import StatsResponse

router = APIRouter()


@router.get("/stats", response_model=StatsResponse, summary="Row counts for documents and cached embeddings")
async def get_stats(pool: ConnectionPool = Depends(get_pool)) -> StatsResponse:
    docs = await pool.query("SELECT COUNT(*) AS count FROM docs")
    cached = await pool.query("SELECT COUNT(*) AS count FROM embedding_cache")
    documents = int(docs[0]["count"]) if docs else 0
    INDEX_SIZE.set(documents)
    return StatsResponse(
        documents=documents,
        cached_embeddings=int(cached[0]["count"]) if cached else 0,
    )


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
