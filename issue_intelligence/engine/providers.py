"""Embedding and structured-generation capabilities consumed by the engine.

The detectors only depend on the two abstract bases below; concrete adapters
(sentence-transformers for embeddings, OpenAI-compatible and Anthropic HTTP
APIs for structured generation) are injected by the caller.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Callable

import httpx
import numpy as np
from pydantic import BaseModel

from issue_intelligence.engine.config import IntelligenceSettings, intel_settings


class ProviderError(Exception):
    """Raised when an embedding or generation provider call fails."""


class EmbeddingUnavailableError(ProviderError):
    """Raised by the similarity engine when embeddings could not be produced."""


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Compute cosine similarity between two vectors."""
    a_arr = np.asarray(a, dtype=float)
    b_arr = np.asarray(b, dtype=float)

    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a_arr, b_arr) / (norm_a * norm_b))


class Embedder(ABC):
    """Embedding capability: single and batched text embedding plus similarity."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""

    @abstractmethod
    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts. Output order matches input order."""

    def cosine_similarity(self, a: list[float], b: list[float]) -> float:
        return cosine_similarity(a, b)


class StructuredGenerator(ABC):
    """Structured generation capability: prompt in, JSON object out."""

    @abstractmethod
    async def generate_structured(
        self,
        prompt: str,
        schema: type[BaseModel],
        system_prompt: str = "",
    ) -> dict:
        """Return the provider's raw JSON object. Validation is the caller's job."""


# --- Embeddings ---

class SentenceTransformerEmbedder(Embedder):
    """Local sentence-transformers model, loaded lazily on first use."""

    def __init__(self, model_name: str = ""):
        self.model_name = model_name or intel_settings.embedding_model
        self._model = None

    def _get_model(self):
        """Lazy-load the SentenceTransformer. Raises ImportError if not installed."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = self._get_model()
        embeddings = model.encode(texts, normalize_embeddings=True)
        return embeddings.tolist()

    async def embed(self, text: str) -> list[float]:
        vectors = await asyncio.to_thread(self._encode, [text])
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, texts)


# --- Structured generation transport ---

def detect_provider_from_key(api_key: str) -> str | None:
    """Auto-detect LLM provider from API key prefix.

    Returns provider name or None if unrecognized.
    """
    if not api_key:
        return None
    if api_key.startswith("sk-ant-"):
        return "anthropic"
    if api_key.startswith("sk-or-"):
        return "openrouter"
    if api_key.startswith("sk-"):
        return "openai"
    return None


def resolve_provider_and_key(settings: Any) -> tuple[str, str]:
    """Resolve effective (provider, api_key) from IntelligenceSettings.

    Returns ("", "") when no provider is configured.
    """
    provider = settings.llm_provider

    if provider != "auto":
        key_map = {
            "openai": settings.openai_api_key,
            "openrouter": settings.openrouter_api_key,
            "anthropic": settings.anthropic_api_key,
            "generic": settings.generic_api_key,
        }
        return (provider, settings.llm_api_key or key_map.get(provider, ""))

    if settings.llm_api_key:
        detected = detect_provider_from_key(settings.llm_api_key)
        if detected:
            return (detected, settings.llm_api_key)

    if settings.openrouter_api_key:
        return ("openrouter", settings.openrouter_api_key)
    if settings.anthropic_api_key:
        return ("anthropic", settings.anthropic_api_key)
    if settings.openai_api_key:
        return ("openai", settings.openai_api_key)
    if settings.generic_api_key and settings.generic_base_url:
        return ("generic", settings.generic_api_key)

    return ("", "")


def _schema_instruction(schema: type[BaseModel]) -> str:
    return (
        "\n\nYou MUST respond with ONLY valid JSON matching this JSON schema:\n"
        f"{json.dumps(schema.model_json_schema(), indent=2)}\n"
        "No markdown fences, no extra text."
    )


async def _post_for_json(
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any],
    extract: Callable[[dict], str],
    timeout_seconds: int,
    provider_label: str,
) -> dict:
    """POST ``payload`` and decode the JSON document found by ``extract`` in the response body.

    Raises ProviderError on any transport, status or decoding failure.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(url, headers=headers, json=payload)

        if resp.status_code != 200:
            raise ProviderError(f"{provider_label} returned {resp.status_code}: {resp.text[:500]}")

        return json.loads(extract(resp.json()))

    except httpx.TimeoutException:
        raise ProviderError(f"{provider_label} request timed out after {timeout_seconds}s")
    except httpx.HTTPError as e:
        raise ProviderError(f"{provider_label} HTTP error: {e}")
    except (KeyError, IndexError, TypeError) as e:
        raise ProviderError(f"Unexpected response structure from {provider_label}: {e}")
    except json.JSONDecodeError as e:
        raise ProviderError(f"Failed to parse {provider_label} response as JSON: {e}")


async def call_openai_compatible(
    prompt: str,
    schema: type[BaseModel],
    *,
    system_prompt: str,
    api_key: str,
    model: str,
    base_url: str,
    timeout_seconds: int = 60,
) -> dict:
    """Chat completions call with ``schema`` sent as a strict ``response_format``.

    Used for OpenAI direct, OpenRouter and generic providers.
    """
    if not api_key:
        raise ProviderError("No API key provided for OpenAI-compatible provider.")
    if not base_url:
        raise ProviderError("No base URL provided for OpenAI-compatible provider.")

    payload = {
        "model": model,
        "temperature": 0,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ],
        "response_format": {
            "type": "json_schema",
            "json_schema": {"name": schema.__name__, "schema": schema.model_json_schema()},
        },
    }

    return await _post_for_json(
        f"{base_url}/chat/completions",
        {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        payload,
        lambda body: body["choices"][0]["message"]["content"],
        timeout_seconds,
        "API",
    )


async def call_anthropic(
    prompt: str,
    schema: type[BaseModel],
    *,
    system_prompt: str,
    api_key: str,
    model: str,
    base_url: str,
    timeout_seconds: int = 60,
) -> dict:
    """Messages API call. The API has no structured output mode, so ``schema`` rides in the prompt."""
    if not api_key:
        raise ProviderError("No API key provided for Anthropic provider.")

    payload = {
        "model": model,
        "max_tokens": 2048,
        "temperature": 0,
        "system": system_prompt,
        "messages": [{"role": "user", "content": prompt + _schema_instruction(schema)}],
    }

    return await _post_for_json(
        f"{base_url}/v1/messages",
        {"x-api-key": api_key, "anthropic-version": "2023-06-01", "Content-Type": "application/json"},
        payload,
        # Content comes back as a list of blocks
        lambda body: body["content"][0]["text"],
        timeout_seconds,
        "Anthropic API",
    )


class OpenAICompatibleGenerator(StructuredGenerator):
    """Structured generation over an OpenAI-compatible chat completions API."""

    def __init__(self, api_key: str, model: str, base_url: str, timeout_seconds: int = 60):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds

    async def generate_structured(self, prompt: str, schema: type[BaseModel], system_prompt: str = "") -> dict:
        return await call_openai_compatible(
            prompt, schema,
            system_prompt=system_prompt,
            api_key=self.api_key,
            model=self.model,
            base_url=self.base_url,
            timeout_seconds=self.timeout_seconds,
        )


class AnthropicGenerator(StructuredGenerator):
    """Structured generation over the Anthropic Messages API."""

    def __init__(self, api_key: str, model: str, base_url: str, timeout_seconds: int = 60):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds

    async def generate_structured(self, prompt: str, schema: type[BaseModel], system_prompt: str = "") -> dict:
        return await call_anthropic(
            prompt, schema,
            system_prompt=system_prompt,
            api_key=self.api_key,
            model=self.model,
            base_url=self.base_url,
            timeout_seconds=self.timeout_seconds,
        )


def build_generator(settings: IntelligenceSettings | None = None) -> StructuredGenerator | None:
    """Build the configured structured generator, or None when no provider has a key."""
    s = settings or intel_settings
    provider, api_key = resolve_provider_and_key(s)
    if not provider or not api_key:
        return None

    timeout = s.llm_timeout_seconds
    if provider == "anthropic":
        return AnthropicGenerator(api_key, s.anthropic_model, s.anthropic_base_url, timeout)
    if provider == "openai":
        return OpenAICompatibleGenerator(api_key, s.openai_model, s.openai_base_url, timeout)
    if provider == "openrouter":
        return OpenAICompatibleGenerator(api_key, s.openrouter_model, s.openrouter_base_url, timeout)
    if provider == "generic":
        return OpenAICompatibleGenerator(api_key, s.generic_model, s.generic_base_url, timeout)

    raise ProviderError(
        f"Unknown LLM provider '{provider}'. Use 'auto', 'openai', 'openrouter', 'anthropic', or 'generic'."
    )
