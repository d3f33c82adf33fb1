"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from docchat.core.config import Settings, get_settings
from docchat.core.logging import get_logger
from docchat.db.sqlite import ConnectionPool
from docchat.ingest.cache import EmbeddingCache
from docchat.ingest.embeddings import BatchEmbedder
from docchat.ingest.pipeline import IngestPipeline
from docchat.ingest.providers import Embedder, get_embedder
from docchat.rag.generation import Generator, get_generator
from docchat.rag.orchestrator import RAGOrchestrator
from docchat.retrieval import SearchService, VectorRetriever

logger = get_logger(__name__)

_POOL: ConnectionPool | None = None
_CACHE: EmbeddingCache | None = None
_EMBEDDER: Embedder | None = None
_BATCH_EMBEDDER: BatchEmbedder | None = None
_GENERATOR: Generator | None = None
_PIPELINE: IngestPipeline | None = None
_SEARCH_SERVICE: SearchService | None = None
_ORCHESTRATOR: RAGOrchestrator | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_pool() -> ConnectionPool:
    global _POOL
    if _POOL is None:
        settings = get_app_settings()
        settings.db_path.parent.mkdir(parents=True, exist_ok=True)
        _POOL = ConnectionPool(
            settings.db_path,
            size=settings.pool_size,
            retry_attempts=settings.retry_attempts,
            retry_initial_delay=settings.retry_initial_delay,
        )
    return _POOL


def get_embedding_cache() -> EmbeddingCache:
    global _CACHE
    if _CACHE is None:
        settings = get_app_settings()
        _CACHE = EmbeddingCache(
            get_pool(),
            lookup_batch_size=settings.cache_lookup_batch_size,
            write_batch_size=settings.cache_write_batch_size,
            write_pause_ms=settings.cache_write_pause_ms,
            writer_workers=settings.cache_writer_workers,
            writer_queue_size=settings.cache_writer_queue_size,
        )
    return _CACHE


def get_embedding_backend() -> Embedder:
    global _EMBEDDER
    if _EMBEDDER is None:
        _EMBEDDER = get_embedder(get_app_settings())
    return _EMBEDDER


def get_batch_embedder() -> BatchEmbedder:
    global _BATCH_EMBEDDER
    if _BATCH_EMBEDDER is None:
        settings = get_app_settings()
        _BATCH_EMBEDDER = BatchEmbedder(
            get_embedding_backend(),
            get_embedding_cache(),
            batch_size=settings.embed_batch_size,
            dim=settings.embedding_dim,
        )
    return _BATCH_EMBEDDER


def get_retriever() -> VectorRetriever:
    return VectorRetriever(get_pool(), dim=get_app_settings().embedding_dim)


def get_search_service() -> SearchService:
    global _SEARCH_SERVICE
    if _SEARCH_SERVICE is None:
        _SEARCH_SERVICE = SearchService(get_app_settings(), get_batch_embedder(), get_retriever())
    return _SEARCH_SERVICE


def get_generation_backend() -> Generator:
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = get_generator(get_app_settings())
    return _GENERATOR


def get_orchestrator() -> RAGOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = RAGOrchestrator(
            get_app_settings(),
            get_batch_embedder(),
            get_retriever(),
            get_generation_backend(),
        )
    return _ORCHESTRATOR


def get_ingest_pipeline() -> IngestPipeline:
    global _PIPELINE
    if _PIPELINE is None:
        _PIPELINE = IngestPipeline(get_pool(), get_app_settings(), get_batch_embedder())
    return _PIPELINE


async def shutdown() -> None:
    """Drain pending cache writes, close provider clients, then the pool."""
    global _POOL, _CACHE, _EMBEDDER, _BATCH_EMBEDDER, _GENERATOR, _PIPELINE, _SEARCH_SERVICE, _ORCHESTRATOR
    if _CACHE is not None:
        await _CACHE.close()
    for client in (_EMBEDDER, _GENERATOR):
        if client is None:
            continue
        try:
            await client.aclose()
        except Exception:
            logger.exception("Failed to close %s client", client.name)
    if _POOL is not None:
        await _POOL.close()
    _POOL = _CACHE = _EMBEDDER = _BATCH_EMBEDDER = _GENERATOR = None
    _PIPELINE = _SEARCH_SERVICE = _ORCHESTRATOR = None


__all__ = [
    "get_app_settings",
    "get_pool",
    "get_embedding_cache",
    "get_embedding_backend",
    "get_batch_embedder",
    "get_retriever",
    "get_search_service",
    "get_generation_backend",
    "get_orchestrator",
    "get_ingest_pipeline",
    "shutdown",
]
