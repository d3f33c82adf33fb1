"""Tests for retrieval utilities."""

import asyncio

import pytest

from conftest import FakeEmbedder
from docchat.core.errors import ValidationError
from docchat.db.vectors import cosine_distance, from_blob, to_blob
from docchat.ingest.cache import EmbeddingCache
from docchat.ingest.embeddings import BatchEmbedder
from docchat.retrieval import SearchService, VectorRetriever


def _axis(index: int, dim: int = 512) -> list[float]:
    vector = [0.0] * dim
    vector[index] = 1.0
    return vector


async def _insert(pool, key: str, url: str, vector: list[float]) -> None:
    await pool.execute(
        "INSERT INTO docs (hash, title, url, content, full_embedding) VALUES (?, ?, ?, ?, ?)",
        [key, key, url, f"Title: {key}\nURL Source: {url}\nbody {key}", to_blob(vector)],
    )


def test_cosine_distance_basics() -> None:
    assert cosine_distance([1.0, 0.0], [1.0, 0.0]) == pytest.approx(0.0)
    assert cosine_distance([1.0, 0.0], [0.0, 1.0]) == pytest.approx(1.0)
    assert cosine_distance([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(2.0)
    assert cosine_distance([0.0, 0.0], [1.0, 0.0]) == 1.0
    with pytest.raises(ValueError):
        cosine_distance([1.0], [1.0, 0.0])


def test_blob_round_trip_is_float32() -> None:
    blob = to_blob([0.5, -1.25, 3.0])
    assert len(blob) == 12
    assert from_blob(blob) == [0.5, -1.25, 3.0]


def test_retriever_orders_by_ascending_distance(make_pool) -> None:
    async def scenario():
        pool = make_pool()
        await pool.ensure_schema()
        try:
            near = _axis(0)
            mid = [0.6, 0.8] + [0.0] * 510
            far = _axis(1)
            await _insert(pool, "far", "https://x/far", far)
            await _insert(pool, "near", "https://x/near", near)
            await _insert(pool, "mid", "https://x/mid", mid)
            retriever = VectorRetriever(pool)
            return await retriever.retrieve(_axis(0), 2), await retriever.retrieve(_axis(0), 0)
        finally:
            await pool.close()

    top, none = asyncio.run(scenario())
    assert [ref.hash for ref in top] == ["near", "mid"]
    assert top[0].distance == pytest.approx(0.0, abs=1e-6)
    assert top[0].distance <= top[1].distance
    assert top[0].to_public() == {"url": "https://x/near", "content": top[0].content}
    assert none == []


def test_retriever_rejects_wrong_dimension(make_pool) -> None:
    retriever = VectorRetriever(make_pool())
    with pytest.raises(ValueError):
        asyncio.run(retriever.retrieve([1.0, 0.0], 3))


def test_search_service_validates_query(make_pool, settings) -> None:
    async def scenario(query):
        pool = make_pool()
        await pool.ensure_schema()
        service = SearchService(settings, BatchEmbedder(FakeEmbedder(), EmbeddingCache(pool)), VectorRetriever(pool))
        try:
            return await service.search(query)
        finally:
            await pool.close()

    for query in (None, "", "   "):
        with pytest.raises(ValidationError):
            asyncio.run(scenario(query))


def test_search_service_respects_limit(make_pool, settings) -> None:
    async def scenario():
        pool = make_pool()
        await pool.ensure_schema()
        cache = EmbeddingCache(pool, write_pause_ms=0)
        service = SearchService(settings, BatchEmbedder(FakeEmbedder(), cache), VectorRetriever(pool))
        try:
            for idx in range(8):
                await _insert(pool, f"doc{idx}", f"https://x/{idx}", _axis(idx))
            return await service.search("install", limit=5)
        finally:
            await cache.close()
            await pool.close()

    results = asyncio.run(scenario())
    assert len(results) == 5
