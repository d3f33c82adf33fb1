"""Document loaders for supported formats."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Sequence

import orjson
import yaml

from docchat.core.logging import get_logger
from docchat.ingest.types import SourceDocument

logger = get_logger(__name__)


class BaseLoader:
    """Common loader interface."""

    suffixes: tuple[str, ...] = ()

    def can_load(self, path: Path) -> bool:
        return path.suffix.lower() in self.suffixes

    def load(self, path: Path, url: str) -> list[SourceDocument]:  # pragma: no cover - interface
        raise NotImplementedError


class MarkdownLoader(BaseLoader):
    suffixes = (".md", ".markdown", ".mdx")

    def load(self, path: Path, url: str) -> list[SourceDocument]:
        text = path.read_bytes().decode("utf-8", errors="ignore")
        front_matter, body = _split_front_matter(text)
        title = path.stem
        created_at = None
        if front_matter:
            title = str(front_matter.get("title") or title)
            created = front_matter.get("created") or front_matter.get("date")
            created_at = str(created) if created is not None else None
        return [SourceDocument(title=title, url=url, content=body.strip(), created_at=created_at)]


class IssuesLoader(BaseLoader):
    """GitHub issue exports: a JSON array of issues, each with an optional ``comment_list``."""

    suffixes = (".json",)

    def load(self, path: Path, url: str) -> list[SourceDocument]:
        payload = orjson.loads(path.read_bytes())
        if not isinstance(payload, list):
            raise ValueError(f"{path} is not a JSON array of issues")
        documents: list[SourceDocument] = []
        for issue in payload:
            documents.extend(_issue_documents(issue))
        return documents


class LoaderRegistry:
    """Registry that selects an appropriate loader for a path."""

    def __init__(self) -> None:
        self._loaders: list[BaseLoader] = [MarkdownLoader(), IssuesLoader()]

    def register(self, loader: BaseLoader) -> None:
        self._loaders.append(loader)

    def for_path(self, path: Path) -> BaseLoader | None:
        for loader in self._loaders:
            if loader.can_load(path):
                return loader
        return None

    def load(self, path: Path, url: str) -> list[SourceDocument]:
        loader = self.for_path(path)
        if loader is None:
            raise ValueError(f"No loader registered for suffix {path.suffix}")
        return loader.load(path, url)


def iter_source_files(paths: Sequence[Path], registry: LoaderRegistry) -> Iterable[tuple[Path, Path]]:
    """Yield ``(root, file)`` pairs for every loadable file under ``paths``."""
    for raw in paths:
        root = raw.expanduser().resolve()
        if root.is_file():
            yield root.parent, root
            continue
        if not root.is_dir():
            logger.warning("Skipping missing path %s", root)
            continue
        for file_path in sorted(root.rglob("*")):
            if file_path.is_file() and registry.for_path(file_path) is not None:
                yield root, file_path


def source_url(root: Path, path: Path, base_url: str | None) -> str:
    """Public URL of ``path``: ``base_url`` joined with its path below ``root``, else a file URI."""
    if not base_url:
        return path.as_uri()
    relative = path.relative_to(root).as_posix()
    return f"{base_url.rstrip('/')}/{relative}"


def _issue_documents(issue: Any) -> list[SourceDocument]:
    if not isinstance(issue, dict):
        return []
    number = issue.get("number")
    title = issue.get("title") or ""
    documents = [
        SourceDocument(
            title=f"Issue #{number}: {title}",
            url=issue.get("html_url") or "",
            content=f"Title: {title}\n\n{issue.get('body') or ''}",
            type="issue",
            created_at=issue.get("created_at"),
        )
    ]
    for comment in issue.get("comment_list") or []:
        if not isinstance(comment, dict) or not comment.get("body"):
            continue
        documents.append(
            SourceDocument(
                title=f"Comment on Issue #{number}",
                url=comment.get("html_url") or "",
                content=comment["body"],
                type="issue_comment",
                created_at=comment.get("created_at"),
            )
        )
    return documents


def _split_front_matter(text: str) -> tuple[dict[str, object] | None, str]:
    if text.startswith("---"):
        parts = text.split("---", 2)
        if len(parts) >= 3:
            fm_raw = parts[1]
            body = parts[2]
            try:
                front_matter = yaml.safe_load(fm_raw) or {}
                if isinstance(front_matter, dict):
                    return front_matter, body
            except yaml.YAMLError:
                pass
    return None, text


__all__ = [
    "BaseLoader",
    "MarkdownLoader",
    "IssuesLoader",
    "LoaderRegistry",
    "iter_source_files",
    "source_url",
]
