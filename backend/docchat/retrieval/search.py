"""Search orchestration."""

from __future__ import annotations

import time

from docchat.core.config import Settings
from docchat.core.errors import ValidationError
from docchat.core.logging import get_logger
from docchat.core.metrics import SERVICE_LATENCY
from docchat.ingest.embeddings import BatchEmbedder
from docchat.retrieval.vector_index import DocumentRef, VectorRetriever

logger = get_logger(__name__)


class SearchService:
    """Embeds a query and returns the nearest stored passages."""

    def __init__(self, settings: Settings, embedder: BatchEmbedder, retriever: VectorRetriever) -> None:
        self.settings = settings
        self.embedder = embedder
        self.retriever = retriever

    async def search(self, query: str | None, limit: int | None = None) -> list[DocumentRef]:
        if not query or not query.strip():
            raise ValidationError()
        start_time = time.perf_counter()
        top_k = limit if limit is not None else self.settings.search_default_limit
        query_vector = await self.embedder.embed(query)
        results = await self.retriever.retrieve(query_vector, top_k)
        duration = time.perf_counter() - start_time
        SERVICE_LATENCY.labels(operation="search").observe(duration)
        logger.info("Search for %r returned %s results in %.3fs", query[:50], len(results), duration)
        return results


__all__ = ["SearchService"]
