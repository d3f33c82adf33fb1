"""Tests for loaders and the ingest pipeline."""

import asyncio
from pathlib import Path

import orjson

from conftest import FakeEmbedder
from docchat.ingest.cache import EmbeddingCache
from docchat.ingest.embeddings import BatchEmbedder
from docchat.ingest.loaders import LoaderRegistry, iter_source_files, source_url
from docchat.ingest.pipeline import IngestPipeline
from docchat.ingest.types import SourceDocument


def _write_docs(root: Path, sample_markdown: str) -> None:
    (root / "guides").mkdir(parents=True)
    (root / "guides" / "install.md").write_text(sample_markdown, encoding="utf-8")
    (root / "faq.md").write_text("---\ntitle: FAQ\n---\n# Questions\nAsk away.", encoding="utf-8")
    (root / "notes.txt").write_text("ignored", encoding="utf-8")


def _run_ingest(make_pool, settings, operation, embedder=None):
    async def scenario():
        pool = make_pool()
        await pool.ensure_schema()
        cache = EmbeddingCache(pool, write_pause_ms=0)
        pipeline = IngestPipeline(pool, settings, BatchEmbedder(embedder or FakeEmbedder(), cache))
        try:
            outcome = await operation(pipeline)
            rows = await pool.query("SELECT hash, title, url, content, type FROM docs ORDER BY url, hash")
            return outcome, [dict(row) for row in rows]
        finally:
            await cache.close()
            await pool.close()

    return asyncio.run(scenario())


def test_loader_reads_markdown_and_front_matter(tmp_path: Path, sample_markdown: str) -> None:
    _write_docs(tmp_path, sample_markdown)
    registry = LoaderRegistry()
    files = [path for _, path in iter_source_files([tmp_path], registry)]
    assert [path.name for path in files] == ["faq.md", "install.md"]

    faq = registry.load(tmp_path / "faq.md", "https://docs/faq.md")[0]
    assert faq.title == "FAQ"
    assert faq.content == "# Questions\nAsk away."
    install = registry.load(tmp_path / "guides" / "install.md", "u")[0]
    assert install.title == "install"


def test_source_url_joins_base_url(tmp_path: Path) -> None:
    path = tmp_path / "guides" / "install.md"
    assert source_url(tmp_path, path, "https://github.com/org/repo/blob/main/docs/") == (
        "https://github.com/org/repo/blob/main/docs/guides/install.md"
    )
    assert source_url(tmp_path, path, None) == path.as_uri()


def test_issue_export_becomes_issue_and_comment_documents(tmp_path: Path) -> None:
    export = tmp_path / "issues.json"
    export.write_bytes(
        orjson.dumps(
            [
                {
                    "number": 7,
                    "title": "Crash on start",
                    "body": "It crashes.",
                    "html_url": "https://github.com/org/repo/issues/7",
                    "created_at": "2024-11-01T00:00:00Z",
                    "comment_list": [
                        {"body": "Fixed in main.", "html_url": "https://github.com/org/repo/issues/7#c1"},
                    ],
                }
            ]
        )
    )
    docs = LoaderRegistry().load(export, export.as_uri())
    assert [(doc.type, doc.title) for doc in docs] == [
        ("issue", "Issue #7: Crash on start"),
        ("issue_comment", "Comment on Issue #7"),
    ]
    assert docs[0].content == "Title: Crash on start\n\nIt crashes."


def test_ingest_paths_indexes_chunks(tmp_path: Path, make_pool, settings, sample_markdown: str) -> None:
    docs_root = tmp_path / "docs"
    _write_docs(docs_root, sample_markdown)

    outcome, rows = _run_ingest(
        make_pool,
        settings,
        lambda pipeline: pipeline.ingest_paths([docs_root], base_url="https://docs.example.com"),
    )
    assert outcome["stats"] == {"processed": 2, "skipped": 0, "failed": 0, "chunks": 4}
    assert len(rows) == 4
    assert {row["url"] for row in rows} == {
        "https://docs.example.com/faq.md",
        "https://docs.example.com/guides/install.md",
    }
    for row in rows:
        assert row["content"].startswith(f"Title: {row['title']}\nURL Source: {row['url']}\n")
        assert row["type"] == "document"


def test_reingest_skips_existing_rows(tmp_path: Path, make_pool, settings, sample_markdown: str) -> None:
    document = SourceDocument(title="Guide", url="https://docs/guide", content=sample_markdown)
    provider = FakeEmbedder()

    async def twice(pipeline):
        first = await pipeline.ingest_documents([document])
        second = await pipeline.ingest_documents([document])
        return first, second

    (first, second), rows = _run_ingest(make_pool, settings, twice, embedder=provider)
    assert first["stats"]["chunks"] == 3
    assert second["stats"] == {"processed": 0, "skipped": 1, "failed": 0, "chunks": 0}
    assert len(rows) == 3
    assert len(provider.calls) == 1


def test_embedding_failure_is_counted_not_raised(make_pool, settings) -> None:
    good = SourceDocument(title="Good", url="https://docs/good", content="# Good\nfine")
    bad = SourceDocument(title="Bad", url="https://docs/bad", content="# Bad\nbroken")
    provider = FakeEmbedder(vector_fn=lambda text: [0.1] * (3 if "broken" in text else 512))

    outcome, rows = _run_ingest(
        make_pool,
        settings,
        lambda pipeline: pipeline.ingest_documents([good, bad]),
        embedder=provider,
    )
    assert outcome["stats"] == {"processed": 1, "skipped": 0, "failed": 1, "chunks": 1}
    assert [row["url"] for row in rows] == ["https://docs/good"]
    assert outcome["results"][1]["status"] == "error"


def test_unreadable_file_is_reported_first(tmp_path: Path, make_pool, settings) -> None:
    docs_root = tmp_path / "docs"
    docs_root.mkdir()
    (docs_root / "broken.json").write_text("[{not json", encoding="utf-8")
    (docs_root / "ok.md").write_text("# Fine\nThis page loads.", encoding="utf-8")

    outcome, rows = _run_ingest(make_pool, settings, lambda pipeline: pipeline.ingest_paths([docs_root]))
    assert outcome["stats"] == {"processed": 1, "skipped": 0, "failed": 1, "chunks": 1}
    assert outcome["results"][0]["title"] == "broken"
    assert outcome["results"][0]["status"] == "error"
    assert len(rows) == 1
