"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "DOCCHAT_"
DEFAULT_CONFIG_PATH = Path("~/.config/docchat/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "pool_size"): "pool_size",
    ("storage", "retry_attempts"): "retry_attempts",
    ("storage", "retry_initial_delay"): "retry_initial_delay",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "base_url"): "embedding_base_url",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "batch_size"): "embed_batch_size",
    ("cache", "lookup_batch_size"): "cache_lookup_batch_size",
    ("cache", "write_batch_size"): "cache_write_batch_size",
    ("cache", "write_pause_ms"): "cache_write_pause_ms",
    ("cache", "writer_workers"): "cache_writer_workers",
    ("cache", "writer_queue_size"): "cache_writer_queue_size",
    ("generation", "backend"): "generation_backend",
    ("generation", "model"): "generation_model",
    ("generation", "base_url"): "generation_base_url",
    ("generation", "timeout"): "generation_timeout",
    ("chunking", "chunk_size"): "chunk_size",
    ("chunking", "overlap_size"): "chunk_overlap",
    ("retrieval", "chat_top_k"): "chat_top_k",
    ("retrieval", "search_limit"): "search_default_limit",
    ("chat", "history_window"): "history_window",
    ("chat", "expose_errors"): "expose_errors",
    ("chat", "assistant_name"): "assistant_name",
    ("chat", "product_name"): "product_name",
    ("http", "retry_attempts"): "http_retry_attempts",
    ("http", "retry_initial_delay"): "http_retry_initial_delay",
}

# Secrets never come from the YAML file.
_SECRET_FIELDS = frozenset({"embedding_api_key", "generation_api_key"})


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".docchat" / "docchat.db")
    pool_size: int = Field(default=4, ge=1)
    retry_attempts: int = Field(default=3, ge=1)
    retry_initial_delay: float = 1.0

    embedding_backend: Literal["voyage", "hashed"] = "voyage"
    embedding_model: str = "voyage-3-lite"
    embedding_base_url: str = "https://api.voyageai.com/v1"
    embedding_api_key: str | None = None
    embedding_dim: int = 512
    embed_batch_size: int = Field(default=128, ge=1)

    cache_lookup_batch_size: int = Field(default=500, ge=1)
    cache_write_batch_size: int = Field(default=50, ge=1)
    cache_write_pause_ms: int = Field(default=100, ge=0)
    cache_writer_workers: int = Field(default=2, ge=1)
    cache_writer_queue_size: int = Field(default=256, ge=1)

    generation_backend: Literal["openrouter", "openai", "together", "cerebras"] = "openrouter"
    generation_model: str = "anthropic/claude-3.5-sonnet:beta"
    generation_base_url: str | None = None
    generation_api_key: str | None = None
    generation_timeout: float = 60.0

    chunk_size: int = 1024
    chunk_overlap: int = 128
    chat_top_k: int = 15
    search_default_limit: int = 10
    history_window: int = 5
    expose_errors: bool = False
    assistant_name: str = "DocChat"
    product_name: str = "this project and its documentation"

    http_retry_attempts: int = Field(default=3, ge=1)
    http_retry_initial_delay: float = 1.0

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields and key not in _SECRET_FIELDS:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with DOCCHAT_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
