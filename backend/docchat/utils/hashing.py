"""Hashing utilities."""

from __future__ import annotations

_DJB2_SEED = 5381
_MASK_32 = 0xFFFFFFFF


def hash_string(text: str) -> int:
    """Return the 32-bit djb2 fingerprint of ``text``.

    Iterates UTF-16 code units so values match fingerprints already stored
    by the JavaScript indexer (``charCodeAt`` semantics).
    """
    value = _DJB2_SEED
    encoded = text.encode("utf-16-le", "surrogatepass")
    for idx in range(0, len(encoded), 2):
        unit = encoded[idx] | (encoded[idx + 1] << 8)
        value = (value * 33 + unit) & _MASK_32
    return value


def document_key(content: str) -> str:
    """Primary key for a ``docs`` row; the text form of the fingerprint."""
    return str(hash_string(content))


__all__ = ["hash_string", "document_key"]
