"""Embedding utilities."""

from __future__ import annotations

import math
from typing import Any, Sequence

from docchat.core.errors import ProviderError, ShapeError
from docchat.core.logging import get_logger
from docchat.ingest.cache import EmbeddingCache
from docchat.ingest.providers import Embedder
from docchat.ingest.types import CacheEntry
from docchat.utils.hashing import hash_string

logger = get_logger(__name__)

EMBEDDING_DIM = 512


def validate_embedding(vector: Any, index: int, dim: int = EMBEDDING_DIM) -> list[float]:
    """Return ``vector`` as floats or raise :class:`ShapeError`.

    Requires exactly ``dim`` finite numeric components; lengths are never
    padded or truncated.
    """
    if not isinstance(vector, (list, tuple)):
        raise ShapeError(index, None, dim, detail=f"got {type(vector).__name__}")
    if len(vector) != dim:
        raise ShapeError(index, len(vector), dim)
    values: list[float] = []
    for position, value in enumerate(vector):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ShapeError(index, len(vector), dim, detail=f"non-numeric component at {position}")
        if not math.isfinite(value):
            raise ShapeError(index, len(vector), dim, detail=f"non-finite component at {position}")
        values.append(float(value))
    return values


class BatchEmbedder:
    """Cache-aware embedding front end over an :class:`Embedder` backend."""

    def __init__(
        self,
        embedder: Embedder,
        cache: EmbeddingCache,
        batch_size: int = 128,
        dim: int = EMBEDDING_DIM,
    ) -> None:
        self.embedder = embedder
        self.cache = cache
        self.batch_size = min(batch_size, embedder.max_batch_size)
        self.dim = dim

    async def embed(self, text: str) -> list[float]:
        """Embed one text (query path): cache, then provider, then background cache write."""
        hash_value = hash_string(text)
        cached = await self._cached(hash_value, text)
        if cached is not None:
            logger.debug("Cache hit for embedding: %s...", text[:10])
            return cached

        vectors = await self.embedder.embed([text])
        if len(vectors) != 1:
            raise ProviderError(
                f"{self.embedder.name} returned {len(vectors)} embeddings for 1 input",
                provider=self.embedder.name,
            )
        vector = validate_embedding(vectors[0], 0, self.dim)
        await self.cache.store_later([CacheEntry(hash=hash_value, text=text, embedding=vector)])
        return vector

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed ``texts``; output is aligned with input order.

        Cached vectors are reused, misses go to the provider in sub-batches
        of ``batch_size``, and every fresh vector is validated before any of
        them is queued for caching. A malformed vector fails the call.
        """
        if not texts:
            return []

        results: list[list[float] | None] = [None] * len(texts)
        pending: dict[str, list[int]] = {}
        for idx, text in enumerate(texts):
            cached = await self._cached(hash_string(text), text)
            if cached is not None:
                results[idx] = cached
            else:
                pending.setdefault(text, []).append(idx)

        non_cached = list(pending)
        logger.info(
            "Embedding batch of %s texts (%s cached, %s to compute)",
            len(texts),
            len(texts) - sum(len(positions) for positions in pending.values()),
            len(non_cached),
        )

        computed: list[list[float]] = []
        try:
            for start in range(0, len(non_cached), self.batch_size):
                batch = non_cached[start : start + self.batch_size]
                vectors = await self.embedder.embed(batch)
                if len(vectors) != len(batch):
                    raise ProviderError(
                        f"{self.embedder.name} returned {len(vectors)} embeddings for {len(batch)} inputs",
                        provider=self.embedder.name,
                    )
                computed.extend(
                    validate_embedding(vector, start + offset, self.dim)
                    for offset, vector in enumerate(vectors)
                )
        except (ProviderError, ShapeError):
            logger.exception("Failed to generate embeddings batch")
            raise

        entries = [
            CacheEntry(hash=hash_string(text), text=text, embedding=vector)
            for text, vector in zip(non_cached, computed)
        ]
        await self.cache.store_later(entries)

        for text, vector in zip(non_cached, computed):
            for idx in pending[text]:
                results[idx] = vector
        return [vector for vector in results if vector is not None]

    async def _cached(self, hash_value: int, text: str) -> list[float] | None:
        try:
            return await self.cache.lookup(hash_value, text)
        except Exception:
            logger.exception("Cache check failed for text: %s...", text[:50])
            return None


__all__ = ["BatchEmbedder", "validate_embedding", "EMBEDDING_DIM"]
