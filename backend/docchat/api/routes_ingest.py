"""Ingest API routes."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends

from docchat.api.dependencies import get_ingest_pipeline
from docchat.ingest.pipeline import IngestPipeline
from docchat.models.dto import IngestRequest, IngestResponse

router = APIRouter()


@router.post("", response_model=IngestResponse, summary="Index markdown files and issue exports")
async def trigger_ingest(
    request: IngestRequest,
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> IngestResponse:
    paths = [Path(path).expanduser() for path in request.paths]
    payload = await pipeline.ingest_paths(paths, base_url=request.base_url)
    return IngestResponse(**payload)
