"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "docchat_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "docchat_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

SERVICE_LATENCY = Histogram(
    "docchat_service_latency_seconds",
    "Time spent in search and chat handling, including the full answer stream",
    labelnames=("operation",),
    registry=REGISTRY,
)

EMBED_CACHE_LOOKUPS = Counter(
    "docchat_embedding_cache_lookups_total",
    "Embedding cache lookups by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

PROVIDER_CALLS = Counter(
    "docchat_provider_calls_total",
    "Calls made to external providers",
    labelnames=("provider", "kind", "status"),
    registry=REGISTRY,
)

CACHE_WRITES = Counter(
    "docchat_embedding_cache_writes_total",
    "Background embedding cache writes by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

INGEST_DURATION = Histogram(
    "docchat_ingest_duration_seconds",
    "Ingest pipeline duration",
    labelnames=("source",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "docchat_indexed_documents",
    "Number of rows stored in the docs table",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "SERVICE_LATENCY",
    "EMBED_CACHE_LOOKUPS",
    "PROVIDER_CALLS",
    "CACHE_WRITES",
    "INGEST_DURATION",
    "INDEX_SIZE",
    "metrics_response",
]
