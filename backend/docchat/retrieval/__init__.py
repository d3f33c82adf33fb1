"""Retrieval components."""

from .vector_index import DocumentRef, VectorRetriever
from .search import SearchService

__all__ = [
    "DocumentRef",
    "VectorRetriever",
    "SearchService",
]
