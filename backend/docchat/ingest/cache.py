"""Content-addressed embedding cache."""

from __future__ import annotations

import asyncio
from typing import Iterable, Sequence

from docchat.core.errors import CacheWriteError
from docchat.core.logging import get_logger
from docchat.core.metrics import CACHE_WRITES, EMBED_CACHE_LOOKUPS
from docchat.db.sqlite import ConnectionPool
from docchat.db.vectors import from_json, to_json
from docchat.ingest.types import CacheEntry

logger = get_logger(__name__)


class EmbeddingCache:
    """Maps a text fingerprint to a previously computed embedding.

    Writes are insert-if-absent, so concurrent writers on the same key are
    harmless and the first stored vector wins. The stored text doubles as a
    collision check: a row whose text differs from the requested one is
    reported as a miss.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        lookup_batch_size: int = 500,
        write_batch_size: int = 50,
        write_pause_ms: int = 100,
        writer_workers: int = 2,
        writer_queue_size: int = 256,
    ) -> None:
        self.pool = pool
        self.lookup_batch_size = lookup_batch_size
        self.write_batch_size = write_batch_size
        self.write_pause = write_pause_ms / 1000
        self.writer = CacheWriter(self, workers=writer_workers, queue_size=writer_queue_size)

    async def lookup(self, hash_value: int, text: str | None = None) -> list[float] | None:
        pending = self.writer.pending(hash_value)
        if pending is not None and (text is None or pending.text == text):
            EMBED_CACHE_LOOKUPS.labels(outcome="hit").inc()
            return list(pending.embedding)

        rows = await self.pool.query(
            "SELECT text, embedding FROM embedding_cache WHERE hash = ?",
            [hash_value],
        )
        if not rows:
            EMBED_CACHE_LOOKUPS.labels(outcome="miss").inc()
            return None
        row = rows[0]
        if text is not None and row["text"] is not None and row["text"] != text:
            logger.warning("Embedding cache collision on hash %s; treating as miss", hash_value)
            EMBED_CACHE_LOOKUPS.labels(outcome="collision").inc()
            return None
        EMBED_CACHE_LOOKUPS.labels(outcome="hit").inc()
        return from_json(row["embedding"])

    async def store(self, hash_value: int, text: str, vector: Sequence[float]) -> bool:
        """Insert if absent; returns True when a new row was written."""
        inserted = await self.pool.execute(
            "INSERT OR IGNORE INTO embedding_cache (hash, text, embedding) VALUES (?, ?, ?)",
            [hash_value, text, to_json(vector)],
        )
        return inserted > 0

    async def lookup_many(self, hashes: Sequence[int]) -> set[int]:
        """Return the subset of ``hashes`` already present in the cache."""
        present: set[int] = set()
        for start in range(0, len(hashes), self.lookup_batch_size):
            batch = list(hashes[start : start + self.lookup_batch_size])
            placeholders = ",".join("?" for _ in batch)
            rows = await self.pool.query(
                f"SELECT hash FROM embedding_cache WHERE hash IN ({placeholders})",
                batch,
            )
            present.update(int(row["hash"]) for row in rows)
        return present

    async def store_many(self, entries: Sequence[CacheEntry]) -> tuple[int, int]:
        """Persist entries in paced sub-batches; returns ``(successes, failures)``."""
        successes = 0
        failures = 0
        for start in range(0, len(entries), self.write_batch_size):
            batch = entries[start : start + self.write_batch_size]
            outcomes = await asyncio.gather(
                *(self._store_entry(entry) for entry in batch),
                return_exceptions=True,
            )
            for entry, outcome in zip(batch, outcomes):
                if isinstance(outcome, CacheWriteError):
                    failures += 1
                    logger.error("Failed to cache embedding for text: %s...", entry.text[:50], exc_info=outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    successes += 1
            if start + self.write_batch_size < len(entries) and self.write_pause > 0:
                await asyncio.sleep(self.write_pause)
        CACHE_WRITES.labels(outcome="success").inc(successes)
        CACHE_WRITES.labels(outcome="failure").inc(failures)
        logger.info("Cache storage complete. Successes: %s, Failures: %s", successes, failures)
        return successes, failures

    async def store_later(self, entries: Iterable[CacheEntry]) -> None:
        """Hand entries to the background writer without waiting for persistence."""
        await self.writer.submit(list(entries))

    async def flush(self) -> None:
        await self.writer.join()

    async def close(self) -> None:
        await self.writer.close()

    async def _store_entry(self, entry: CacheEntry) -> bool:
        try:
            return await self.store(entry.hash, entry.text, entry.embedding)
        except Exception as exc:
            raise CacheWriteError(f"cache write failed for hash {entry.hash}") from exc


class CacheWriter:
    """Bounded queue drained by a fixed number of worker tasks.

    ``submit`` blocks only when the queue is full. Entries stay visible
    through ``pending`` until their job finishes, successfully or not.
    """

    def __init__(self, cache: EmbeddingCache, workers: int = 2, queue_size: int = 256) -> None:
        self.cache = cache
        self.worker_count = workers
        self.queue_size = queue_size
        self._queue: asyncio.Queue[list[CacheEntry]] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._pending: dict[int, CacheEntry] = {}
        self.successes = 0
        self.failures = 0

    def pending(self, hash_value: int) -> CacheEntry | None:
        return self._pending.get(hash_value)

    async def submit(self, entries: list[CacheEntry]) -> None:
        if not entries:
            return
        queue = self._start()
        for entry in entries:
            self._pending.setdefault(entry.hash, entry)
        await queue.put(entries)

    async def join(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        if self._queue is None:
            return
        await self._queue.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None

    def _start(self) -> asyncio.Queue[list[CacheEntry]]:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.queue_size)
            self._workers = [
                asyncio.create_task(self._run(self._queue), name=f"cache-writer-{idx}")
                for idx in range(self.worker_count)
            ]
        return self._queue

    async def _run(self, queue: asyncio.Queue[list[CacheEntry]]) -> None:
        while True:
            entries = await queue.get()
            try:
                successes, failures = await self.cache.store_many(entries)
                self.successes += successes
                self.failures += failures
            except Exception:
                self.failures += len(entries)
                logger.exception("Background cache write of %s entries failed", len(entries))
            finally:
                for entry in entries:
                    if self._pending.get(entry.hash) is entry:
                        del self._pending[entry.hash]
                queue.task_done()


__all__ = ["EmbeddingCache", "CacheWriter"]
