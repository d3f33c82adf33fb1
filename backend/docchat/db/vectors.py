"""Vector (de)serialisation and distance helpers."""

from __future__ import annotations

import math
from array import array
from typing import Sequence

import orjson


def to_blob(vector: Sequence[float]) -> bytes:
    """Pack a vector as little-endian float32 bytes."""
    return array("f", vector).tobytes()


def from_blob(blob: bytes) -> list[float]:
    floats = array("f")
    floats.frombytes(blob)
    return list(floats)


def to_json(vector: Sequence[float]) -> str:
    return orjson.dumps(list(vector)).decode("utf-8")


def from_json(payload: str | bytes) -> list[float]:
    return [float(value) for value in orjson.loads(payload)]


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Return ``1 - cosine_similarity``; 1.0 when either vector is all zeros."""
    if len(a) != len(b):
        raise ValueError(f"Vector dimension mismatch: {len(a)} != {len(b)}")
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0 or norm_b == 0:
        return 1.0
    return 1.0 - dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def sql_vector_distance_cos(left: bytes | None, right: bytes | None) -> float | None:
    """SQLite scalar function over two float32 blobs."""
    if left is None or right is None:
        return None
    return cosine_distance(from_blob(left), from_blob(right))


__all__ = [
    "to_blob",
    "from_blob",
    "to_json",
    "from_json",
    "cosine_distance",
    "sql_vector_distance_cos",
]
