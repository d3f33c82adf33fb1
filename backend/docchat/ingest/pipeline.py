"""Ingest pipeline orchestration."""

from __future__ import annotations

import time
from dataclasses import asdict
from pathlib import Path
from typing import Sequence

from docchat.core.config import Settings
from docchat.core.errors import ProviderError, ShapeError
from docchat.core.logging import get_logger
from docchat.core.metrics import INDEX_SIZE, INGEST_DURATION
from docchat.db.sqlite import ConnectionPool
from docchat.db.vectors import to_blob
from docchat.ingest.chunker import chunk_markdown
from docchat.ingest.embeddings import BatchEmbedder
from docchat.ingest.loaders import LoaderRegistry, iter_source_files, source_url
from docchat.ingest.types import Chunk, IngestResult, IngestStats, SourceDocument
from docchat.utils.hashing import document_key
from docchat.utils.time import utc_timestamp

logger = get_logger(__name__)

_INSERT_DOC_SQL = """
INSERT OR IGNORE INTO docs (hash, title, url, content, full_embedding, type, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?)
"""


class IngestPipeline:
    """Coordinate loaders, chunking, embeddings, and persistence.

    Rows are content addressed: a chunk whose key already exists is
    skipped, so re-running an ingest over unchanged files is a no-op.
    Failures are counted per chunk and never abort the run.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        settings: Settings,
        embedder: BatchEmbedder,
        loader_registry: LoaderRegistry | None = None,
    ) -> None:
        self.pool = pool
        self.settings = settings
        self.embedder = embedder
        self.loader_registry = loader_registry or LoaderRegistry()

    async def ingest_paths(self, paths: Sequence[Path], base_url: str | None = None) -> dict[str, object]:
        documents: list[SourceDocument] = []
        load_errors: list[IngestResult] = []
        for root, path in iter_source_files(paths, self.loader_registry):
            url = source_url(root, path, base_url)
            try:
                loaded = self.loader_registry.load(path, url)
            except Exception as exc:
                logger.exception("Failed to load %s: %s", path, exc)
                load_errors.append(IngestResult(title=path.stem, url=url, status="error", detail=str(exc)))
                continue
            logger.info("Loaded %s document(s) from %s", len(loaded), path)
            documents.extend(loaded)

        return await self.ingest_documents(documents, source="paths", load_errors=load_errors)

    async def ingest_documents(
        self,
        documents: Sequence[SourceDocument],
        source: str = "documents",
        load_errors: Sequence[IngestResult] = (),
    ) -> dict[str, object]:
        """Chunk, embed and store ``documents``; ``load_errors`` are reported ahead of them."""
        start_time = time.perf_counter()
        stats = IngestStats()
        results: list[IngestResult] = list(load_errors)
        for failure in load_errors:
            _update_stats(stats, failure)

        chunked: list[tuple[SourceDocument, list[Chunk]]] = []
        for document in documents:
            chunks = chunk_markdown(
                document.content,
                document.metadata,
                chunk_size=self.settings.chunk_size,
                overlap_size=self.settings.chunk_overlap,
            )
            logger.info("Created %s chunks for %s", len(chunks), document.title)
            chunked.append((document, chunks))

        keys = [document_key(chunk.content) for _, chunks in chunked for chunk in chunks]
        existing = await self._existing_documents(keys)

        seen: set[str] = set()
        for document, chunks in chunked:
            result = IngestResult(title=document.title, url=document.url, status="skipped")
            fresh: list[tuple[str, Chunk]] = []
            for chunk in chunks:
                key = document_key(chunk.content)
                if key in existing:
                    if existing[key] != chunk.content:
                        logger.warning(
                            "Document key collision for %s; keeping the stored row",
                            document.url,
                            extra={"ctx_hash": key},
                        )
                    continue
                if key in seen:
                    continue
                seen.add(key)
                fresh.append((key, chunk))

            if fresh:
                inserted, failed, errors = await self._persist_chunks(document, fresh)
                result.chunks = inserted
                result.errors = errors
                if failed:
                    result.status = "error"
                    result.detail = f"{failed} of {len(fresh)} chunks failed"
                elif inserted:
                    result.status = "processed"
            results.append(result)
            _update_stats(stats, result)

        duration = time.perf_counter() - start_time
        INGEST_DURATION.labels(source=source).observe(duration)
        await self._update_index_metric()
        logger.info(
            "Ingest complete. Successes: %s, Failures: %s",
            stats.chunks,
            stats.failed,
            extra={"ctx_stats": stats.to_dict(), "ctx_duration_s": round(duration, 3)},
        )
        return {"stats": stats.to_dict(), "results": [asdict(r) for r in results]}

    async def document_count(self) -> int:
        rows = await self.pool.query("SELECT COUNT(*) AS count FROM docs")
        return int(rows[0]["count"]) if rows else 0

    # Internal helpers -------------------------------------------------

    async def _existing_documents(self, keys: Sequence[str]) -> dict[str, str]:
        """Stored content by key for every key already present, queried in batches."""
        unique = list(dict.fromkeys(keys))
        logger.info("Checking for %s existing documents", len(unique))
        existing: dict[str, str] = {}
        batch_size = self.settings.cache_lookup_batch_size
        for start in range(0, len(unique), batch_size):
            batch = unique[start : start + batch_size]
            placeholders = ",".join("?" for _ in batch)
            rows = await self.pool.query(
                f"SELECT hash, content FROM docs WHERE hash IN ({placeholders})",
                batch,
            )
            for row in rows:
                existing[str(row["hash"])] = row["content"]
        logger.info("Found %s existing documents", len(existing))
        return existing

    async def _persist_chunks(
        self,
        document: SourceDocument,
        fresh: Sequence[tuple[str, Chunk]],
    ) -> tuple[int, int, list[str]]:
        try:
            vectors = await self.embedder.embed_batch([chunk.content for _, chunk in fresh])
        except (ProviderError, ShapeError) as exc:
            logger.error("Failed to embed %s chunks for %s: %s", len(fresh), document.url, exc)
            return 0, len(fresh), [str(exc)]

        inserted = 0
        failed = 0
        errors: list[str] = []
        created_at = document.created_at or utc_timestamp()
        for position, ((key, chunk), vector) in enumerate(zip(fresh, vectors), start=1):
            try:
                rowcount = await self.pool.execute(
                    _INSERT_DOC_SQL,
                    [
                        key,
                        chunk.metadata.title,
                        chunk.metadata.url,
                        chunk.content,
                        to_blob(vector),
                        document.type,
                        created_at,
                    ],
                )
            except Exception as exc:
                failed += 1
                errors.append(str(exc))
                logger.exception("Failed to insert document %s/%s for %s", position, len(fresh), document.url)
                continue
            inserted += rowcount
            logger.debug("Inserted document %s/%s", position, len(fresh))
        return inserted, failed, errors

    async def _update_index_metric(self) -> None:
        try:
            INDEX_SIZE.set(await self.document_count())
        except Exception:  # pragma: no cover - metrics failures should not block ingest
            logger.debug("Could not refresh index size metric", exc_info=True)


def _update_stats(stats: IngestStats, result: IngestResult) -> None:
    stats.chunks += result.chunks
    if result.status == "processed":
        stats.processed += 1
    elif result.status == "skipped":
        stats.skipped += 1
    elif result.status == "error":
        stats.failed += 1


__all__ = ["IngestPipeline"]
