"""Generation provider backends."""

from __future__ import annotations

import os
import re
from typing import Any, AsyncIterator, Mapping, Sequence, TypeVar

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError as SchemaValidationError

from docchat.core.config import Settings
from docchat.core.errors import ProviderError
from docchat.core.metrics import PROVIDER_CALLS
from docchat.core.retry import call_provider

ModelT = TypeVar("ModelT", bound=BaseModel)

# backend name -> (base URL, API key environment variable)
PROVIDER_PRESETS: Mapping[str, tuple[str, str]] = {
    "openrouter": ("https://openrouter.ai/api/v1", "OPENROUTER_API_KEY"),
    "openai": ("https://api.openai.com/v1", "OPENAI_API_KEY"),
    "together": ("https://api.together.xyz/v1", "TOGETHER_API_KEY"),
    "cerebras": ("https://api.cerebras.ai/v1", "CEREBRAS_API_KEY"),
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


class Generator:
    """Capability interface for text generation."""

    name = "generator"

    def stream(
        self,
        system: str,
        messages: Sequence[Mapping[str, str]],
        options: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        raise NotImplementedError

    async def generate_structured(
        self,
        schema: type[ModelT],
        system: str,
        prompt: str,
        max_retries: int = 3,
    ) -> ModelT:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def _provider_error(provider: str, exc: openai.OpenAIError) -> ProviderError:
    status = exc.status_code if isinstance(exc, openai.APIStatusError) else None
    return ProviderError(f"{provider} request failed: {exc}", provider=provider, status=status)


class OpenAICompatibleGenerator(Generator):
    """Chat-completions client for OpenAI-compatible endpoints (OpenRouter, Together, ...)."""

    def __init__(
        self,
        name: str,
        model: str,
        api_key: str,
        base_url: str,
        timeout: float = 60.0,
        extra_headers: Mapping[str, str] | None = None,
        retry_initial_delay: float = 1.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.name = name
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.retry_initial_delay = retry_initial_delay
        # call_provider owns backoff; the SDK never retries on its own.
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=self.base_url,
            default_headers=dict(extra_headers or {}),
            timeout=timeout,
            max_retries=0,
            http_client=http_client,
        )

    async def stream(
        self,
        system: str,
        messages: Sequence[Mapping[str, str]],
        options: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        try:
            stream = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "system", "content": system}, *messages],
                stream=True,
                **(options or {}),
            )
            async with stream:
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta
                    if delta is not None and delta.content:
                        yield delta.content
        except openai.OpenAIError as exc:
            PROVIDER_CALLS.labels(provider=self.name, kind="stream", status="error").inc()
            raise _provider_error(self.name, exc) from exc
        PROVIDER_CALLS.labels(provider=self.name, kind="stream", status="ok").inc()

    async def generate_structured(
        self,
        schema: type[ModelT],
        system: str,
        prompt: str,
        max_retries: int = 3,
    ) -> ModelT:
        response_format = {
            "type": "json_schema",
            "json_schema": {"name": schema.__name__, "schema": schema.model_json_schema()},
        }

        async def _attempt() -> ModelT:
            try:
                completion = await self._client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": prompt},
                    ],
                    response_format=response_format,
                )
            except openai.OpenAIError as exc:
                raise _provider_error(self.name, exc) from exc
            if not completion.choices:
                raise ProviderError(f"{self.name} returned no choices", provider=self.name)
            content = completion.choices[0].message.content or ""
            try:
                return schema.model_validate_json(_FENCE_RE.sub("", content.strip()))
            except SchemaValidationError as exc:
                raise ProviderError(
                    f"{self.name} output did not match {schema.__name__}: {exc.error_count()} errors",
                    provider=self.name,
                ) from exc

        try:
            result = await call_provider(
                _attempt,
                provider=self.name,
                attempts=max_retries,
                initial_delay=self.retry_initial_delay,
                label=f"{self.name} structured generation",
            )
        except ProviderError:
            PROVIDER_CALLS.labels(provider=self.name, kind="structured", status="error").inc()
            raise
        PROVIDER_CALLS.labels(provider=self.name, kind="structured", status="ok").inc()
        return result

    async def aclose(self) -> None:
        await self._client.close()


def get_generator(settings: Settings) -> Generator:
    """Build the generation backend named by ``settings.generation_backend``."""
    backend = settings.generation_backend
    if backend not in PROVIDER_PRESETS:
        raise ValueError(f"Unknown generation backend: {backend}")
    default_url, key_var = PROVIDER_PRESETS[backend]
    api_key = settings.generation_api_key or os.environ.get(key_var)
    if not api_key:
        raise ProviderError(f"No API key for '{backend}'. Set {key_var}", provider=backend, status=401)
    extra_headers: dict[str, str] = {}
    if backend == "openrouter":
        for header, env_var in (("HTTP-Referer", "OPENROUTER_REFERRER"), ("X-Title", "OPENROUTER_TITLE")):
            value = os.environ.get(env_var)
            if value:
                extra_headers[header] = value
    return OpenAICompatibleGenerator(
        name=backend,
        model=settings.generation_model,
        api_key=api_key,
        base_url=settings.generation_base_url or default_url,
        timeout=settings.generation_timeout,
        extra_headers=extra_headers,
        retry_initial_delay=settings.http_retry_initial_delay,
    )


__all__ = ["Generator", "OpenAICompatibleGenerator", "get_generator", "PROVIDER_PRESETS"]
