"""Search and chat API routes."""

from __future__ import annotations

from contextlib import aclosing
from typing import Any, AsyncIterator, Sequence

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from docchat.api.dependencies import get_orchestrator, get_search_service
from docchat.models.dto import ChatRequest, ErrorResponse, SearchRequest, SearchResult
from docchat.rag.orchestrator import RAGOrchestrator, extract_query
from docchat.retrieval.search import SearchService

router = APIRouter()

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post(
    "/search",
    response_model=list[SearchResult],
    responses={400: {"model": ErrorResponse}},
    summary="Nearest documentation passages for a query",
)
async def search(
    request: SearchRequest,
    service: SearchService = Depends(get_search_service),
) -> list[SearchResult]:
    results = await service.search(request.query, request.limit)
    return [SearchResult(**ref.to_public()) for ref in results]


@router.post(
    "/chat",
    responses={400: {"model": ErrorResponse}},
    summary="Stream a grounded answer as server-sent events",
)
async def chat(
    request: ChatRequest,
    orchestrator: RAGOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    messages = [message.model_dump() for message in request.messages]
    extract_query(messages)
    return StreamingResponse(
        _event_stream(orchestrator, messages),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


async def _event_stream(orchestrator: RAGOrchestrator, messages: Sequence[dict[str, Any]]) -> AsyncIterator[bytes]:
    async with aclosing(orchestrator.stream(messages)) as events:
        async for event in events:
            yield event.to_sse()


__all__ = ["router"]
