"""
Model Layer: LLM Abstraction & Policy Enforcement.

Responsibility:
- Abstract specific provider clients (OpenAI-compatible, Ollama, Anthropic)
- Enforce timeouts and retries
- Chat completions and text embeddings

This is the ONLY place where model providers are called.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from observability.logger import Observability
from shared.config import Settings
from shared.errors import ConfigurationMissing, ProviderFailure
from shared.models import ModelPolicy

logger = logging.getLogger(__name__)

PROVIDERS = {"auto", "ollama", "openai_compatible", "anthropic"}


class ModelSelector:
    """Manages provider calls with reliability policies."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        provider: str = "auto",
        api_key: str = "",
        embedding_model: str = "text-embedding-3-small",
        anthropic_version: str = "2023-06-01",
        timeout_seconds: float = 60.0,
    ):
        self.base_url = (base_url or "http://localhost:11434").rstrip("/")
        provider_raw = (provider or "auto").strip().lower()
        if provider_raw not in PROVIDERS:
            provider_raw = "auto"
        self.provider = self._resolve_provider(provider_raw, self.base_url)
        self.api_key = (api_key or "").strip()
        self.embedding_model = embedding_model
        self.anthropic_version = anthropic_version

        base_headers: dict[str, str] = {}
        if self.provider == "openai_compatible" and self.api_key:
            base_headers["Authorization"] = f"Bearer {self.api_key}"

        # Persistent client with connection pooling
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,  # default, overridden by policy
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            headers=base_headers,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelSelector":
        return cls(
            base_url=settings.model_base_url,
            provider=settings.model_provider,
            api_key=settings.model_api_key,
            embedding_model=settings.embedding_model,
            timeout_seconds=settings.model_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        """Hosted providers need a key; a local Ollama does not."""
        if self.provider == "ollama":
            return True
        return bool(self.api_key)

    @property
    def embeddings_available(self) -> bool:
        return self.is_configured and self.provider != "anthropic"

    async def generate(
        self,
        messages: list[dict],
        policy: ModelPolicy,
        session_id: str | None = None,
    ) -> str:
        """Execute a chat completion with retry/timeout policy and return the text."""
        if not self.is_configured:
            raise ConfigurationMissing(f"No API key configured for provider '{self.provider}'")

        obs = Observability(session_id)
        attempts = max(1, policy.max_retries)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                with obs.measure(
                    "model_call",
                    {
                        "model": policy.model_name,
                        "attempt": attempt,
                        "provider": self.provider,
                    },
                ):
                    return await self._call_model(messages, policy)

            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.warning(
                    "Model call failed (attempt %d/%d): %s",
                    attempt,
                    attempts,
                    e,
                )

        obs.log_event(
            "model_failure",
            {"error": str(last_error), "policy": policy.model_dump()},
            level="ERROR",
        )
        raise ProviderFailure(f"Completion provider failed: {last_error}") from last_error

    async def embed(
        self,
        texts: list[str],
        session_id: str | None = None,
        timeout_seconds: float = 30.0,
    ) -> list[list[float]]:
        """Embed a batch of texts, preserving input order."""
        if not texts:
            return []
        if not self.embeddings_available:
            raise ConfigurationMissing(f"Embeddings are not available for provider '{self.provider}'")

        obs = Observability(session_id)
        try:
            with obs.measure(
                "embedding_call",
                {"model": self.embedding_model, "provider": self.provider, "count": len(texts)},
            ):
                if self.provider == "openai_compatible":
                    vectors = await self._embed_openai(texts, timeout_seconds)
                else:
                    vectors = await self._embed_ollama(texts, timeout_seconds)
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderFailure(f"Embedding provider failed: {e}") from e

        if len(vectors) != len(texts):
            raise ProviderFailure(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} inputs"
            )
        return vectors

    def _resolve_provider(self, provider_raw: str, base_url: str) -> str:
        if provider_raw != "auto":
            return provider_raw

        lowered = (base_url or "").strip().lower()
        if "anthropic.com" in lowered:
            return "anthropic"
        if "openai.com" in lowered or lowered.endswith("/v1"):
            return "openai_compatible"
        return "ollama"

    async def _call_model(self, messages: list[dict], policy: ModelPolicy) -> str:
        """Low-level model API call dispatching by configured provider."""
        if self.provider == "anthropic":
            return await self._call_anthropic_messages(messages, policy)
        if self.provider == "openai_compatible":
            return await self._call_openai_chat(messages, policy)
        return await self._call_ollama_chat(messages, policy)

    async def _call_anthropic_messages(self, messages: list[dict], policy: ModelPolicy) -> str:
        """Low-level Anthropic /v1/messages call."""
        payload_messages: list[dict[str, str]] = []
        system_parts: list[str] = []
        for message in messages:
            role = str(message.get("role", "user")).strip().lower()
            text = str(message.get("content", "")).strip()
            if not text:
                continue
            if role == "system":
                system_parts.append(text)
                continue
            if role not in {"user", "assistant"}:
                role = "user"
            payload_messages.append({"role": role, "content": text})

        if not payload_messages:
            payload_messages = [{"role": "user", "content": "Hello"}]

        system_prompt = "\n\n".join(system_parts).strip()

        payload: dict[str, Any] = {
            "model": policy.model_name,
            "messages": payload_messages,
            "temperature": policy.temperature,
            "max_tokens": policy.max_tokens,
        }
        if system_prompt:
            payload["system"] = system_prompt

        response = await self._client.post(
            "/v1/messages",
            json=payload,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": self.anthropic_version,
            },
            timeout=policy.timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
        text_parts = [
            str(block.get("text", "")).strip()
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        text_parts = [part for part in text_parts if part]
        if not text_parts:
            raise ValueError("Anthropic response missing text content")
        return "\n".join(text_parts)

    async def _call_ollama_chat(self, messages: list[dict], policy: ModelPolicy) -> str:
        """Low-level Ollama /api/chat call."""
        payload: dict[str, Any] = {
            "model": policy.model_name,
            "messages": messages,
            "stream": False,
            "keep_alive": "10m",
            "options": {
                "temperature": policy.temperature,
                "num_ctx": 4096,
                "num_predict": policy.max_tokens,
            },
        }

        response = await self._client.post(
            "/api/chat",
            json=payload,
            timeout=policy.timeout_seconds,
        )
        response.raise_for_status()
        return response.json().get("message", {}).get("content", "")

    async def _call_openai_chat(self, messages: list[dict], policy: ModelPolicy) -> str:
        """OpenAI-compatible /v1/chat/completions call."""
        payload: dict[str, Any] = {
            "model": policy.model_name,
            "messages": messages,
            "temperature": policy.temperature,
            "max_tokens": policy.max_tokens,
            "stream": False,
        }
        if policy.presence_penalty is not None:
            payload["presence_penalty"] = policy.presence_penalty
        if policy.frequency_penalty is not None:
            payload["frequency_penalty"] = policy.frequency_penalty

        response = await self._client.post(
            "/v1/chat/completions",
            json=payload,
            timeout=policy.timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise ValueError("OpenAI-compatible response missing choices")
        message = choices[0].get("message") or {}
        return str(message.get("content", ""))

    async def _embed_openai(self, texts: list[str], timeout_seconds: float) -> list[list[float]]:
        response = await self._client.post(
            "/v1/embeddings",
            json={"model": self.embedding_model, "input": texts},
            timeout=timeout_seconds,
        )
        response.raise_for_status()
        rows = sorted(response.json().get("data") or [], key=lambda row: row.get("index", 0))
        return [list(row.get("embedding") or []) for row in rows]

    async def _embed_ollama(self, texts: list[str], timeout_seconds: float) -> list[list[float]]:
        response = await self._client.post(
            "/api/embed",
            json={"model": self.embedding_model, "input": texts},
            timeout=timeout_seconds,
        )
        response.raise_for_status()
        return [list(vector) for vector in response.json().get("embeddings") or []]

    async def aclose(self) -> None:
        """Close persistent connections."""
        await self._client.aclose()
