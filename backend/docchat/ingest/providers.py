"""Embedding provider backends."""

from __future__ import annotations

import hashlib
import math
import os
import re
from typing import Any, Sequence

import voyageai
from voyageai import error as voyage_error

from docchat.core.config import Settings
from docchat.core.errors import ProviderError
from docchat.core.logging import get_logger
from docchat.core.metrics import PROVIDER_CALLS
from docchat.core.retry import call_provider

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class Embedder:
    """Capability interface: turn a batch of texts into vectors."""

    name = "embedder"
    dim: int
    max_batch_size: int = 128

    async def embed(self, texts: Sequence[str]) -> list[Any]:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class HashedEmbedder(Embedder):
    """Deterministic hashed bag-of-words embedder for offline use."""

    name = "hashed"

    def __init__(self, dim: int = 512) -> None:
        self.dim = dim

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        PROVIDER_CALLS.labels(provider=self.name, kind="embed", status="ok").inc()
        return [self._encode(text) for text in texts]

    def _encode(self, text: str) -> list[float]:
        vector = [0.0] * self.dim
        for token in _TOKEN_RE.findall(text.lower()):
            vector[_hash_token(token, self.dim)] += 1.0
        _normalize(vector)
        return vector


class VoyageEmbedder(Embedder):
    """Voyage AI embeddings through the ``voyageai`` async client."""

    name = "voyage"
    max_batch_size = 128

    def __init__(
        self,
        api_key: str,
        model: str = "voyage-3-lite",
        base_url: str | None = None,
        dim: int = 512,
        timeout: float = 60.0,
        retry_attempts: int = 3,
        retry_initial_delay: float = 1.0,
        client: Any = None,
    ) -> None:
        self.model = model
        self.dim = dim
        self.retry_attempts = retry_attempts
        self.retry_initial_delay = retry_initial_delay
        # call_provider owns backoff; the SDK never retries on its own.
        self._client = client or voyageai.AsyncClient(
            api_key=api_key, max_retries=0, timeout=timeout, base_url=base_url
        )

    async def embed(self, texts: Sequence[str]) -> list[Any]:
        if not texts:
            return []
        if len(texts) > self.max_batch_size:
            raise ProviderError(
                f"voyage accepts at most {self.max_batch_size} inputs per request, got {len(texts)}",
                provider=self.name,
                status=400,
            )

        async def _once() -> list[Any]:
            try:
                result = await self._client.embed(list(texts), model=self.model)
            except voyage_error.VoyageError as exc:
                raise ProviderError(
                    f"voyage embed failed: {exc}",
                    provider=self.name,
                    status=getattr(exc, "http_status", None),
                ) from exc
            return list(result.embeddings)

        try:
            vectors = await call_provider(
                _once,
                provider=self.name,
                attempts=self.retry_attempts,
                initial_delay=self.retry_initial_delay,
                label="voyage embed",
            )
        except ProviderError:
            PROVIDER_CALLS.labels(provider=self.name, kind="embed", status="error").inc()
            raise
        PROVIDER_CALLS.labels(provider=self.name, kind="embed", status="ok").inc()
        if len(vectors) != len(texts):
            raise ProviderError(
                f"voyage returned {len(vectors)} embeddings for {len(texts)} inputs",
                provider=self.name,
                status=200,
            )
        return vectors


def get_embedder(settings: Settings) -> Embedder:
    """Build the embedding backend named by ``settings.embedding_backend``."""
    if settings.embedding_backend == "hashed":
        return HashedEmbedder(dim=settings.embedding_dim)
    if settings.embedding_backend == "voyage":
        api_key = settings.embedding_api_key or os.environ.get("VOYAGE_API_KEY")
        if not api_key:
            raise ProviderError("No API key for 'voyage'. Set VOYAGE_API_KEY", provider="voyage", status=401)
        return VoyageEmbedder(
            api_key=api_key,
            model=settings.embedding_model,
            base_url=settings.embedding_base_url,
            dim=settings.embedding_dim,
            retry_attempts=settings.http_retry_attempts,
            retry_initial_delay=settings.http_retry_initial_delay,
        )
    raise ValueError(f"Unknown embedding backend: {settings.embedding_backend}")


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = ["Embedder", "HashedEmbedder", "VoyageEmbedder", "get_embedder"]
