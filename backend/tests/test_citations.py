"""Tests for citation building and reference rendering."""

from docchat.rag.citations import (
    Citation,
    build_citations,
    dedupe_citations,
    format_context,
    parse_passage,
    referenced_indices,
    render_references,
    snippet,
)
from docchat.retrieval.vector_index import DocumentRef


def _passage(title: str, url: str, body: str) -> DocumentRef:
    return DocumentRef(url=url, content=f"Title: {title}\nURL Source: {url}\n{body}", title=title)


def test_parse_passage_reads_header() -> None:
    title, url, body = parse_passage("Title: Intro\nURL Source: https://a\n# Intro\ntext")
    assert (title, url, body) == ("Intro", "https://a", "# Intro\ntext")


def test_parse_passage_falls_back_without_header() -> None:
    assert parse_passage("plain body", "Fallback", "https://f") == ("Fallback", "https://f", "plain body")


def test_build_citations_indexes_by_rank() -> None:
    citations = build_citations([_passage("A", "https://a", "one"), _passage("B", "https://b", "two")])
    assert [(c.index, c.title, c.url, c.content) for c in citations] == [
        (0, "A", "https://a", "one"),
        (1, "B", "https://b", "two"),
    ]


def test_dedupe_citations_keeps_first_url() -> None:
    citations = [
        Citation(url="A", title="a0", content="", index=0),
        Citation(url="B", title="b1", content="", index=1),
        Citation(url="A", title="a2", content="", index=2),
        Citation(url="C", title="c3", content="", index=3),
    ]
    assert [(c.url, c.index) for c in dedupe_citations(citations)] == [("A", 0), ("B", 1), ("C", 3)]


def test_snippet_is_bounded() -> None:
    assert snippet("short") == "short"
    long_snippet = snippet("x" * 500)
    assert len(long_snippet) == 200
    assert long_snippet.endswith("...")


def test_citation_event_truncates_content() -> None:
    event = Citation(url="https://a", title="A", content="y" * 300, index=4).to_event()
    assert event["index"] == 4
    assert len(event["content"]) == 200


def test_format_context_numbers_blocks() -> None:
    context = format_context(build_citations([_passage("A", "https://a", "alpha body")]))
    assert context == (
        "Reference Index #0\n"
        "Reference Title: A\n"
        "URL Source: https://a\n"
        "----------\n"
        "alpha body\n"
        "----------"
    )


def test_render_references_points_duplicates_at_canonical_citation() -> None:
    citations = [
        Citation(url="https://a", title="Install", content="", index=0),
        Citation(url="https://b", title="Config", content="", index=1),
        Citation(url="https://a", title="Install again", content="", index=2),
    ]
    answer = "See <reference index={2}>dup</reference> and <reference index={1}>Config</reference>."
    rendered = render_references(answer, citations)
    assert rendered == "See <reference index={0}>Install</reference> and <reference index={1}>Config</reference>."
    assert referenced_indices(rendered) == [0, 1]


def test_render_references_leaves_unknown_indices() -> None:
    answer = "<reference index={9}>Missing</reference>"
    assert render_references(answer, []) == answer
