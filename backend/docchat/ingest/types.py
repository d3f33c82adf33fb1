"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class ChunkMetadata:
    """Citation provenance carried by every chunk."""

    title: str
    url: str


@dataclass(slots=True)
class Chunk:
    """A header-prefixed slice of a document; the unit of retrieval."""

    content: str
    metadata: ChunkMetadata


@dataclass(slots=True)
class SourceDocument:
    """A document handed to the indexer before chunking."""

    title: str
    url: str
    content: str
    type: str = "document"
    created_at: str | None = None

    @property
    def metadata(self) -> ChunkMetadata:
        return ChunkMetadata(title=self.title, url=self.url)


@dataclass(slots=True)
class CacheEntry:
    """Embedding cache row keyed by content fingerprint."""

    hash: int
    text: str
    embedding: list[float]


@dataclass(slots=True)
class IngestStats:
    """Aggregated ingest statistics."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    chunks: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "chunks": self.chunks,
        }


@dataclass(slots=True)
class IngestResult:
    """Outcome for a single source document."""

    title: str
    url: str
    status: str
    chunks: int = 0
    detail: str | None = None
    errors: list[str] = field(default_factory=list)


__all__ = [
    "ChunkMetadata",
    "Chunk",
    "SourceDocument",
    "CacheEntry",
    "IngestStats",
    "IngestResult",
]
