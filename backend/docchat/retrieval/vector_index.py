"""Nearest-neighbour retrieval over stored document embeddings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from docchat.db.sqlite import ConnectionPool
from docchat.db.vectors import to_blob


@dataclass(slots=True)
class DocumentRef:
    """A retrieved passage. ``distance`` is cosine distance: smaller is closer."""

    url: str
    content: str
    title: str | None = None
    hash: str | None = None
    distance: float | None = None

    def to_public(self) -> dict[str, str]:
        return {"url": self.url, "content": self.content}


class VectorRetriever:
    """Ranks ``docs`` rows by ascending cosine distance to a query vector."""

    def __init__(self, pool: ConnectionPool, dim: int = 512) -> None:
        self.pool = pool
        self.dim = dim

    async def retrieve(self, query_vector: Sequence[float], k: int) -> list[DocumentRef]:
        if len(query_vector) != self.dim:
            raise ValueError("Query vector dimension mismatch")
        if k <= 0:
            return []
        rows = await self.pool.query(
            """
            SELECT
              hash,
              title,
              url,
              content,
              vector_distance_cos(full_embedding, ?) AS distance
            FROM docs
            WHERE full_embedding IS NOT NULL
            ORDER BY distance ASC
            LIMIT ?
            """,
            [to_blob(query_vector), k],
        )
        return [
            DocumentRef(
                url=row["url"],
                content=row["content"],
                title=row["title"],
                hash=row["hash"],
                distance=float(row["distance"]),
            )
            for row in rows
        ]


__all__ = ["VectorRetriever", "DocumentRef"]
