"""Chunking utilities."""

from __future__ import annotations

import math
import re
from typing import Iterable

from docchat.ingest.types import Chunk, ChunkMetadata, SourceDocument

_LINE_SPLIT_RE = re.compile(r"\n+")

TITLE_PREFIX = "Title: "
URL_PREFIX = "URL Source: "
HEADER_MARKER = "#"
OVERLAP_LINE_WIDTH = 50


def render_header(metadata: ChunkMetadata) -> str:
    """Metadata header that makes a chunk self-citing."""
    return f"{TITLE_PREFIX}{metadata.title}\n{URL_PREFIX}{metadata.url}"


def strip_header(content: str) -> str:
    """Return the chunk body without its ``Title:``/``URL Source:`` header."""
    lines = content.split("\n")
    if len(lines) >= 2 and lines[0].startswith(TITLE_PREFIX) and lines[1].startswith(URL_PREFIX):
        return "\n".join(lines[2:])
    return content


def overlap_line_count(overlap_size: int) -> int:
    return max(0, math.ceil(overlap_size / OVERLAP_LINE_WIDTH))


def chunk_markdown(
    markdown: str,
    metadata: ChunkMetadata,
    chunk_size: int = 1024,
    overlap_size: int = 128,
) -> list[Chunk]:
    """Split markdown into header-aware, overlapping, self-describing chunks.

    Lines accumulate until adding the next one would exceed ``chunk_size``
    characters; the next chunk then starts with the last
    ``ceil(overlap_size / 50)`` lines of the previous one. A line starting
    with ``#`` always opens a new chunk. Blank lines are dropped. The size
    bound is best-effort: a single oversized line still forms its own chunk.
    """
    text = markdown.strip()
    if not text:
        return []

    header = render_header(metadata)
    keep = overlap_line_count(overlap_size)
    bodies: list[list[str]] = []
    current: list[str] = []
    current_size = 0

    for line in _LINE_SPLIT_RE.split(text):
        if line.startswith(HEADER_MARKER):
            if current:
                bodies.append(current)
            current = [line]
            current_size = len(line)
            continue

        if current and current_size + len(line) > chunk_size:
            bodies.append(current)
            current = current[-keep:] if keep else []
            current_size = sum(len(item) for item in current)

        current.append(line)
        current_size += len(line)

    if current:
        bodies.append(current)

    return [Chunk(content=f"{header}\n" + "\n".join(body), metadata=metadata) for body in bodies]


def chunk_documents(
    documents: Iterable[SourceDocument],
    chunk_size: int = 1024,
    overlap_size: int = 128,
) -> list[tuple[SourceDocument, Chunk]]:
    """Chunk several documents, keeping each chunk paired with its source."""
    pairs: list[tuple[SourceDocument, Chunk]] = []
    for document in documents:
        for chunk in chunk_markdown(document.content, document.metadata, chunk_size, overlap_size):
            pairs.append((document, chunk))
    return pairs


__all__ = [
    "chunk_markdown",
    "chunk_documents",
    "render_header",
    "strip_header",
    "overlap_line_count",
    "TITLE_PREFIX",
    "URL_PREFIX",
]
