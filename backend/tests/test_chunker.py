"""Tests for chunker."""

from docchat.ingest.chunker import (
    chunk_documents,
    chunk_markdown,
    overlap_line_count,
    render_header,
    strip_header,
)
from docchat.ingest.types import ChunkMetadata, SourceDocument

META = ChunkMetadata(title="Guide", url="https://docs.example.com/guide")


def test_three_sections_make_three_chunks(sample_markdown: str) -> None:
    chunks = chunk_markdown(sample_markdown, META, chunk_size=1024)
    assert len(chunks) == 3
    bodies = [strip_header(chunk.content) for chunk in chunks]
    assert bodies[0].startswith("# Installation")
    assert bodies[1].startswith("# Configuration")
    assert bodies[2].startswith("# Usage")


def test_every_chunk_starts_with_metadata_header(sample_markdown: str) -> None:
    header = render_header(META)
    assert header == "Title: Guide\nURL Source: https://docs.example.com/guide"
    for chunk in chunk_markdown(sample_markdown, META):
        assert chunk.content.startswith(header + "\n")
        assert chunk.metadata == META


def test_chunks_cover_every_non_blank_line() -> None:
    lines = [f"line {i} " + "x" * 40 for i in range(60)]
    markdown = "\n\n".join(lines)
    chunks = chunk_markdown(markdown, META, chunk_size=300, overlap_size=100)
    assert len(chunks) > 1
    covered = set()
    for chunk in chunks:
        covered.update(strip_header(chunk.content).split("\n"))
    assert covered == set(lines)


def test_chunks_overlap_by_trailing_lines() -> None:
    lines = [f"row {i:02d} " + "y" * 44 for i in range(20)]
    chunks = chunk_markdown("\n".join(lines), META, chunk_size=200, overlap_size=100)
    keep = overlap_line_count(100)
    assert keep == 2
    first = strip_header(chunks[0].content).split("\n")
    second = strip_header(chunks[1].content).split("\n")
    assert second[:keep] == first[-keep:]


def test_chunk_size_is_respected_for_normal_lines() -> None:
    lines = [f"item {i} " + "z" * 30 for i in range(100)]
    for chunk in chunk_markdown("\n".join(lines), META, chunk_size=400, overlap_size=0):
        body = strip_header(chunk.content).split("\n")
        assert sum(len(line) for line in body) <= 400


def test_oversized_line_forms_its_own_chunk() -> None:
    long_line = "w" * 5000
    chunks = chunk_markdown(f"intro\n{long_line}\noutro", META, chunk_size=100, overlap_size=0)
    assert any(strip_header(chunk.content) == long_line for chunk in chunks)


def test_empty_document_has_no_chunks() -> None:
    assert chunk_markdown("", META) == []
    assert chunk_markdown("\n\n  \n", META) == []


def test_chunk_documents_pairs_chunks_with_sources(sample_markdown: str) -> None:
    docs = [
        SourceDocument(title="A", url="https://a", content=sample_markdown),
        SourceDocument(title="B", url="https://b", content="# Only\nOne section"),
    ]
    pairs = chunk_documents(docs)
    assert len(pairs) == 4
    assert [doc.title for doc, _ in pairs] == ["A", "A", "A", "B"]
    assert pairs[-1][1].content.startswith("Title: B\nURL Source: https://b\n# Only")
