"""Test fixtures for DocChat."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Mapping, Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from docchat.core.config import Settings  # noqa: E402
from docchat.core.errors import ProviderError  # noqa: E402
from docchat.db.sqlite import ConnectionPool  # noqa: E402
from docchat.ingest.providers import Embedder, HashedEmbedder  # noqa: E402
from docchat.rag.generation import Generator  # noqa: E402

_SINGLETONS = (
    "_POOL",
    "_CACHE",
    "_EMBEDDER",
    "_BATCH_EMBEDDER",
    "_GENERATOR",
    "_PIPELINE",
    "_SEARCH_SERVICE",
    "_ORCHESTRATOR",
)


class FakeEmbedder(Embedder):
    """Counts provider calls; vectors come from the hashed embedder unless overridden."""

    name = "fake"

    def __init__(self, dim: int = 512, vector_fn: Callable[[str], Any] | None = None) -> None:
        self.dim = dim
        self.calls: list[list[str]] = []
        self._hashed = HashedEmbedder(dim=dim)
        self._vector_fn = vector_fn

    async def embed(self, texts: Sequence[str]) -> list[Any]:
        self.calls.append(list(texts))
        if self._vector_fn is not None:
            return [self._vector_fn(text) for text in texts]
        return await self._hashed.embed(texts)


class FakeGenerator(Generator):
    """Scripted generation backend."""

    name = "fake"

    def __init__(
        self,
        deltas: Sequence[str] = ("Hello", " world"),
        follow_ups: Sequence[str] | None = ("What next?",),
        stream_error: Exception | None = None,
    ) -> None:
        self.deltas = list(deltas)
        self.follow_ups = follow_ups
        self.stream_error = stream_error
        self.systems: list[str] = []
        self.histories: list[list[Mapping[str, str]]] = []
        self.follow_up_cancelled = False

    async def stream(
        self,
        system: str,
        messages: Sequence[Mapping[str, str]],
        options: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        self.systems.append(system)
        self.histories.append(list(messages))
        for delta in self.deltas:
            yield delta
        if self.stream_error is not None:
            raise self.stream_error

    async def generate_structured(self, schema, system, prompt, max_retries=3):
        if self.follow_ups is None:
            raise ProviderError("structured output failed", provider=self.name)
        return schema(followUpPrompts=list(self.follow_ups))


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("DOCCHAT_DB_PATH", str(tmp_path / "docchat.db"))
    monkeypatch.setenv("DOCCHAT_EMBEDDING_BACKEND", "hashed")
    monkeypatch.setenv("DOCCHAT_CACHE_WRITE_PAUSE_MS", "0")
    monkeypatch.setenv("DOCCHAT_RETRY_INITIAL_DELAY", "0")
    monkeypatch.delenv("DOCCHAT_CONFIG", raising=False)

    from docchat.api import dependencies as deps
    from docchat.core.config import get_settings

    get_settings.cache_clear()
    deps.get_app_settings.cache_clear()
    for name in _SINGLETONS:
        setattr(deps, name, None)
    yield
    get_settings.cache_clear()
    deps.get_app_settings.cache_clear()
    for name in _SINGLETONS:
        setattr(deps, name, None)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "docchat.db",
        embedding_backend="hashed",
        cache_write_pause_ms=0,
        retry_initial_delay=0,
        http_retry_initial_delay=0,
    )


@pytest.fixture
def make_pool(tmp_path: Path) -> Callable[[], ConnectionPool]:
    """Pools must be created inside the event loop that uses them."""

    def _make() -> ConnectionPool:
        return ConnectionPool(tmp_path / "docchat.db", size=2, retry_initial_delay=0)

    return _make


@pytest.fixture(scope="session")
def sample_markdown() -> str:
    return (
        "# Installation\n"
        "Run the installer.\n\n"
        "# Configuration\n"
        "Edit the config file.\n\n"
        "# Usage\n"
        "Start the agent."
    )
