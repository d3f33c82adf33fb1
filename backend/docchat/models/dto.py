"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    query: str | None = None
    limit: int | None = Field(default=None, ge=1, le=100)


class SearchResult(BaseModel):
    url: str
    content: str


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str | None = None


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)


class IngestRequest(BaseModel):
    paths: list[str] = Field(description="Markdown files, issue exports or directories to index")
    base_url: str | None = Field(
        default=None,
        description="Public URL prefix for citations; file URIs are used when omitted",
    )


class IngestResponse(BaseModel):
    stats: dict[str, int]
    results: list[dict[str, Any]]


class StatsResponse(BaseModel):
    documents: int
    cached_embeddings: int


class ErrorResponse(BaseModel):
    error: str


__all__ = [
    "SearchRequest",
    "SearchResult",
    "ChatMessage",
    "ChatRequest",
    "IngestRequest",
    "IngestResponse",
    "StatsResponse",
    "ErrorResponse",
]
