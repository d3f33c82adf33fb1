"""Retrieval-augmented chat: grounding, streamed answers and follow-up prompts.

One request walks ``IDLE -> EMBEDDING -> RETRIEVING -> STREAMING ->
FINALIZING -> DONE`` (``ERROR`` from anywhere) and produces, in order:

1. a ``citations`` event with every retrieved passage,
2. one ``text`` event per answer delta from the generation provider,
3. a ``followUpPrompts`` event, when follow-up generation succeeded.

Follow-up generation runs as a separate task started before the answer
stream, so it never delays the first token. It is awaited only after the
answer finished and is cancelled if the consumer goes away first.
"""

from __future__ import annotations

import asyncio
import enum
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping, Sequence

import orjson

from docchat.core.config import Settings
from docchat.core.errors import MASKED_MESSAGE, DocChatError, ValidationError
from docchat.core.logging import get_logger
from docchat.core.metrics import SERVICE_LATENCY
from docchat.ingest.embeddings import BatchEmbedder
from docchat.rag.citations import Citation, build_citations, dedupe_citations, format_context, referenced_indices
from docchat.rag.generation import Generator
from docchat.rag.prompts import (
    FOLLOW_UP_COUNT,
    FOLLOW_UP_USER_PROMPT,
    FollowUpPrompts,
    answer_system_prompt,
    follow_up_system_prompt,
)
from docchat.retrieval.vector_index import DocumentRef, VectorRetriever

logger = get_logger(__name__)

_CHAT_ROLES = frozenset({"user", "assistant", "system"})


class ChatState(str, enum.Enum):
    IDLE = "idle"
    EMBEDDING = "embedding"
    RETRIEVING = "retrieving"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"


@dataclass(slots=True)
class ChatEvent:
    type: str
    data: Any

    def to_sse(self) -> bytes:
        return b"event: " + self.type.encode("utf-8") + b"\ndata: " + orjson.dumps(self.data) + b"\n\n"


@dataclass(slots=True)
class ChatSession:
    """Per-request state; discarded once the stream completes."""

    query: str
    state: ChatState = ChatState.IDLE
    query_vector: list[float] | None = None
    passages: list[DocumentRef] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    answer_parts: list[str] = field(default_factory=list)
    follow_up_task: asyncio.Task[list[str] | None] | None = None

    @property
    def answer(self) -> str:
        return "".join(self.answer_parts)


def extract_query(messages: Sequence[Mapping[str, Any]] | None) -> str:
    """The last message's content is the query."""
    if not messages:
        raise ValidationError()
    content = messages[-1].get("content")
    if not isinstance(content, str) or not content.strip():
        raise ValidationError()
    return content


class RAGOrchestrator:
    def __init__(
        self,
        settings: Settings,
        embedder: BatchEmbedder,
        retriever: VectorRetriever,
        generator: Generator,
    ) -> None:
        self.settings = settings
        self.embedder = embedder
        self.retriever = retriever
        self.generator = generator

    async def stream(self, messages: Sequence[Mapping[str, Any]]) -> AsyncIterator[ChatEvent]:
        session = ChatSession(query=extract_query(messages))
        start_time = time.perf_counter()
        try:
            session.state = ChatState.EMBEDDING
            session.query_vector = await self.embedder.embed(session.query)

            session.state = ChatState.RETRIEVING
            session.passages = await self.retriever.retrieve(session.query_vector, self.settings.chat_top_k)
            session.citations = build_citations(session.passages)
            context = format_context(session.citations)
            yield ChatEvent("citations", [citation.to_event() for citation in session.citations])

            session.state = ChatState.STREAMING
            session.follow_up_task = asyncio.create_task(self._follow_ups(session.query, context))
            system = answer_system_prompt(context, self.settings.assistant_name, self.settings.product_name)
            async with aclosing(self.generator.stream(system, self._history(messages))) as deltas:
                async for delta in deltas:
                    session.answer_parts.append(delta)
                    yield ChatEvent("text", delta)

            session.state = ChatState.FINALIZING
            prompts = await session.follow_up_task
            if prompts:
                yield ChatEvent("followUpPrompts", prompts)
            session.state = ChatState.DONE
            self._log_exchange(session, time.perf_counter() - start_time)
        except Exception as exc:
            failed_in = session.state
            session.state = ChatState.ERROR
            logger.exception("Chat request failed during %s", failed_in.value)
            yield ChatEvent("error", {"message": self._public_message(exc)})
        finally:
            if session.follow_up_task is not None and not session.follow_up_task.done():
                session.follow_up_task.cancel()

    async def _follow_ups(self, query: str, context: str) -> list[str] | None:
        try:
            result = await self.generator.generate_structured(
                FollowUpPrompts,
                follow_up_system_prompt(context),
                FOLLOW_UP_USER_PROMPT.format(query=query),
                max_retries=3,
            )
        except Exception:
            logger.exception("Error generating follow-up prompts")
            return None
        prompts = [prompt.strip() for prompt in result.followUpPrompts if prompt.strip()]
        return prompts[:FOLLOW_UP_COUNT]

    def _history(self, messages: Sequence[Mapping[str, Any]]) -> list[dict[str, str]]:
        window = messages[-self.settings.history_window :] if self.settings.history_window > 0 else messages[-1:]
        return [
            {"role": str(message.get("role")), "content": str(message.get("content") or "")}
            for message in window
            if message.get("role") in _CHAT_ROLES
        ]

    def _public_message(self, exc: Exception) -> str:
        if isinstance(exc, ValidationError):
            return exc.public_message
        if self.settings.expose_errors:
            return str(exc)
        if isinstance(exc, DocChatError):
            return exc.public_message
        return MASKED_MESSAGE

    def _log_exchange(self, session: ChatSession, duration: float) -> None:
        SERVICE_LATENCY.labels(operation="chat").observe(duration)
        cited = referenced_indices(session.answer)
        logger.info(
            "Chat exchange completed",
            extra={
                "ctx_query": session.query[:200],
                "ctx_answer_chars": len(session.answer),
                "ctx_citations": len(session.citations),
                "ctx_unique_sources": len(dedupe_citations(session.citations)),
                "ctx_cited_indices": cited,
                "ctx_duration_s": round(duration, 3),
            },
        )


__all__ = ["RAGOrchestrator", "ChatEvent", "ChatSession", "ChatState", "extract_query"]
