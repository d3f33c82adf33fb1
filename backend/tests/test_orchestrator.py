"""Tests for the chat orchestrator."""

import asyncio

import pytest

from conftest import FakeEmbedder, FakeGenerator
from docchat.core.errors import MASKED_MESSAGE, ProviderError, ValidationError
from docchat.db.vectors import to_blob
from docchat.ingest.cache import EmbeddingCache
from docchat.ingest.embeddings import BatchEmbedder
from docchat.ingest.providers import HashedEmbedder
from docchat.rag.orchestrator import ChatEvent, RAGOrchestrator, extract_query
from docchat.retrieval import VectorRetriever

QUESTION = [{"role": "user", "content": "How do I install the agent?"}]


class BlockingFollowUps(FakeGenerator):
    async def generate_structured(self, schema, system, prompt, max_retries=3):
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.follow_up_cancelled = True
            raise


async def _seed(pool, documents) -> None:
    vectors = await HashedEmbedder().embed([content for _, content in documents])
    for (url, content), vector in zip(documents, vectors):
        await pool.execute(
            "INSERT INTO docs (hash, title, url, content, full_embedding) VALUES (?, ?, ?, ?, ?)",
            [url, "t", url, content, to_blob(vector)],
        )


def _run_chat(make_pool, settings, generator, messages=QUESTION, documents=()):
    async def scenario() -> list[ChatEvent]:
        pool = make_pool()
        await pool.ensure_schema()
        await _seed(pool, documents)
        cache = EmbeddingCache(pool, write_pause_ms=0)
        orchestrator = RAGOrchestrator(
            settings,
            BatchEmbedder(FakeEmbedder(), cache),
            VectorRetriever(pool),
            generator,
        )
        try:
            return [event async for event in orchestrator.stream(messages)]
        finally:
            await cache.close()
            await pool.close()

    return asyncio.run(scenario())


def test_extract_query_requires_content() -> None:
    assert extract_query(QUESTION) == "How do I install the agent?"
    for messages in ([], None, [{"role": "user", "content": ""}], [{"role": "user"}]):
        with pytest.raises(ValidationError):
            extract_query(messages)


def test_chat_event_sse_framing() -> None:
    assert ChatEvent("text", "Hi").to_sse() == b'event: text\ndata: "Hi"\n\n'


def test_events_arrive_in_order(make_pool, settings) -> None:
    documents = [
        ("https://docs/install", "Title: Install\nURL Source: https://docs/install\n# Install the agent\nrun install"),
        ("https://docs/usage", "Title: Usage\nURL Source: https://docs/usage\n# Usage\nstart it"),
    ]
    generator = FakeGenerator(deltas=["To install", " run it."], follow_ups=["How do I configure it?"])
    events = _run_chat(make_pool, settings, generator, documents=documents)

    assert [event.type for event in events] == ["citations", "text", "text", "followUpPrompts"]
    citations = events[0].data
    assert {citation["url"] for citation in citations} == {"https://docs/install", "https://docs/usage"}
    assert [citation["index"] for citation in citations] == [0, 1]
    assert citations[0]["url"] == "https://docs/install"
    assert "".join(event.data for event in events if event.type == "text") == "To install run it."
    assert events[-1].data == ["How do I configure it?"]
    assert "Reference Index #0" in generator.systems[0]


def test_empty_corpus_still_streams_answer(make_pool, settings) -> None:
    events = _run_chat(make_pool, settings, FakeGenerator(deltas=["I don't know"]))
    assert events[0].type == "citations"
    assert events[0].data == []
    assert events[1].type == "text"


def test_follow_up_failure_is_omitted(make_pool, settings) -> None:
    events = _run_chat(make_pool, settings, FakeGenerator(follow_ups=None))
    assert [event.type for event in events] == ["citations", "text", "text"]


def test_provider_error_is_masked(make_pool, settings) -> None:
    generator = FakeGenerator(deltas=["partial"], stream_error=ProviderError("secret upstream detail"))
    events = _run_chat(make_pool, settings, generator)
    assert [event.type for event in events] == ["citations", "text", "error"]
    assert events[-1].data == {"message": MASKED_MESSAGE}


def test_history_is_limited_to_recent_messages(make_pool, settings) -> None:
    messages = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"} for i in range(7)]
    generator = FakeGenerator()
    _run_chat(make_pool, settings, generator, messages=messages)
    assert [message["content"] for message in generator.histories[0]] == ["m2", "m3", "m4", "m5", "m6"]


def test_disconnect_cancels_follow_up_generation(make_pool, settings) -> None:
    generator = BlockingFollowUps(deltas=["a", "b", "c"])

    async def scenario() -> None:
        pool = make_pool()
        await pool.ensure_schema()
        cache = EmbeddingCache(pool, write_pause_ms=0)
        orchestrator = RAGOrchestrator(settings, BatchEmbedder(FakeEmbedder(), cache), VectorRetriever(pool), generator)
        stream = orchestrator.stream(QUESTION)
        try:
            assert (await stream.__anext__()).type == "citations"
            assert (await stream.__anext__()).type == "text"
            await asyncio.sleep(0)
            await stream.aclose()
            await asyncio.sleep(0)
        finally:
            await cache.close()
            await pool.close()

    asyncio.run(scenario())
    assert generator.follow_up_cancelled is True
