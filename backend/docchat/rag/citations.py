"""Citation extraction, grounding context and URL deduplication."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Iterable, Sequence

from docchat.ingest.chunker import TITLE_PREFIX, URL_PREFIX
from docchat.retrieval.vector_index import DocumentRef

SNIPPET_LENGTH = 200
_ELLIPSIS = "..."
_REFERENCE_RE = re.compile(
    r"<reference\s+index=\{?[\"']?(\d+)[\"']?\}?\s*>(.*?)</reference>",
    re.DOTALL,
)


@dataclass(slots=True)
class Citation:
    url: str
    title: str
    content: str
    index: int

    def to_event(self) -> dict[str, object]:
        payload = asdict(self)
        payload["content"] = snippet(self.content)
        return payload


def parse_passage(content: str, fallback_title: str = "", fallback_url: str = "") -> tuple[str, str, str]:
    """Split a stored passage into ``(title, url, body)`` using its header lines."""
    title = _header_value(content, TITLE_PREFIX) or fallback_title
    url = fallback_url
    body = content
    url_start = content.find(URL_PREFIX)
    if url_start != -1:
        line_end = content.find("\n", url_start)
        url = content[url_start + len(URL_PREFIX) : line_end if line_end != -1 else len(content)].strip()
        body = content[line_end + 1 :] if line_end != -1 else ""
    return title, url or fallback_url, body


def build_citations(passages: Iterable[DocumentRef]) -> list[Citation]:
    """One citation per retrieved passage; ``index`` is the retrieval rank."""
    citations: list[Citation] = []
    for idx, passage in enumerate(passages):
        title, url, body = parse_passage(passage.content, passage.title or "", passage.url)
        citations.append(Citation(url=url, title=title, content=body, index=idx))
    return citations


def snippet(body: str, limit: int = SNIPPET_LENGTH) -> str:
    if len(body) <= limit:
        return body
    return body[: limit - len(_ELLIPSIS)] + _ELLIPSIS


def format_context(citations: Sequence[Citation]) -> str:
    """Numbered grounding block; reference numbers match citation indices."""
    blocks = [
        (
            f"Reference Index #{citation.index}\n"
            f"Reference Title: {citation.title}\n"
            f"URL Source: {citation.url}\n"
            "----------\n"
            f"{citation.content}\n"
            "----------"
        )
        for citation in citations
    ]
    return "\n".join(blocks)


def dedupe_citations(citations: Sequence[Citation]) -> list[Citation]:
    """Keep the first citation per URL, in first-occurrence order."""
    seen: set[str] = set()
    unique: list[Citation] = []
    for citation in citations:
        if citation.url in seen:
            continue
        seen.add(citation.url)
        unique.append(citation)
    return unique


def canonical_citations(citations: Sequence[Citation]) -> dict[int, Citation]:
    """Map every citation index to the first citation sharing its URL."""
    first_by_url: dict[str, Citation] = {}
    mapping: dict[int, Citation] = {}
    for citation in citations:
        canonical = first_by_url.setdefault(citation.url, citation)
        mapping[citation.index] = canonical
    return mapping


def render_references(answer: str, citations: Sequence[Citation]) -> str:
    """Rewrite ``<reference index={N}>`` tags so duplicates point at the canonical citation."""
    mapping = canonical_citations(citations)

    def _replace(match: re.Match[str]) -> str:
        canonical = mapping.get(int(match.group(1)))
        if canonical is None:
            return match.group(0)
        return f"<reference index={{{canonical.index}}}>{canonical.title}</reference>"

    return _REFERENCE_RE.sub(_replace, answer)


def referenced_indices(answer: str) -> list[int]:
    """Indices mentioned by reference tags, in order of first appearance."""
    seen: list[int] = []
    for match in _REFERENCE_RE.finditer(answer):
        value = int(match.group(1))
        if value not in seen:
            seen.append(value)
    return seen


def _header_value(content: str, prefix: str) -> str:
    start = content.find(prefix)
    if start == -1:
        return ""
    end = content.find("\n", start)
    return content[start + len(prefix) : end if end != -1 else len(content)].strip()


__all__ = [
    "Citation",
    "parse_passage",
    "build_citations",
    "snippet",
    "format_context",
    "dedupe_citations",
    "canonical_citations",
    "render_references",
    "referenced_indices",
    "SNIPPET_LENGTH",
]
