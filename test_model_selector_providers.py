from __future__ import annotations

import asyncio

import httpx
import pytest

from models.selector import ModelSelector
from shared.errors import ConfigurationMissing, ProviderFailure
from shared.models import ModelPolicy


class DummyResponse:
    def __init__(self, payload: dict):
        self._payload = payload

    def raise_for_status(self) -> None:
        return None

    def json(self) -> dict:
        return self._payload


class DummyClient:
    def __init__(self, payload: dict | None = None, failures: int = 0):
        self.calls: list[dict] = []
        self.payload = payload if payload is not None else {"content": [{"type": "text", "text": "ok"}]}
        self.failures = failures

    async def post(self, path, json=None, headers=None, timeout=None):
        self.calls.append(
            {
                "path": path,
                "json": json,
                "headers": headers or {},
                "timeout": timeout,
            }
        )
        if self.failures > 0:
            self.failures -= 1
            raise httpx.ConnectError("connection refused")
        return DummyResponse(self.payload)

    async def aclose(self) -> None:
        return None


def _policy(**overrides) -> ModelPolicy:
    values = {"model_name": "test-model", "max_retries": 1, "timeout_seconds": 5.0}
    values.update(overrides)
    return ModelPolicy(**values)


def test_model_selector_auto_detects_provider_from_base_url():
    assert ModelSelector(base_url="https://api.anthropic.com", api_key="k").provider == "anthropic"
    assert ModelSelector(base_url="https://api.openai.com", api_key="k").provider == "openai_compatible"
    assert ModelSelector(base_url="http://gateway.local/v1", api_key="k").provider == "openai_compatible"
    assert ModelSelector(base_url="http://localhost:11434").provider == "ollama"


def test_configuration_depends_on_key_except_for_ollama():
    assert not ModelSelector(base_url="https://api.openai.com").is_configured
    assert ModelSelector(base_url="http://localhost:11434").is_configured
    anthropic = ModelSelector(base_url="https://api.anthropic.com", api_key="k")
    assert anthropic.is_configured
    assert not anthropic.embeddings_available


def test_anthropic_messages_lift_system_prompt_and_return_text():
    selector = ModelSelector(base_url="https://api.anthropic.com", provider="anthropic", api_key="test-key")
    fake_client = DummyClient({"content": [{"type": "text", "text": "Luke writes Python."}]})
    selector._client = fake_client

    out = asyncio.run(
        selector.generate(
            messages=[
                {"role": "system", "content": "You are a terminal."},
                {"role": "bot", "content": "Earlier reply"},
                {"role": "user", "content": "what does he do?"},
            ],
            policy=_policy(model_name="claude-3-5-haiku-latest"),
        )
    )

    assert out == "Luke writes Python."
    assert len(fake_client.calls) == 1
    call = fake_client.calls[0]
    assert call["path"] == "/v1/messages"
    assert call["headers"].get("x-api-key") == "test-key"
    assert call["json"]["model"] == "claude-3-5-haiku-latest"
    assert call["json"]["system"] == "You are a terminal."
    assert [m["role"] for m in call["json"]["messages"]] == ["user", "user"]


def test_openai_chat_passes_sampling_penalties():
    selector = ModelSelector(base_url="https://api.openai.com", api_key="k")
    fake_client = DummyClient({"choices": [{"message": {"content": "hello"}}]})
    selector._client = fake_client

    out = asyncio.run(
        selector.generate(
            [{"role": "user", "content": "hi"}],
            _policy(temperature=0.65, presence_penalty=0.1, frequency_penalty=0.2),
        )
    )

    assert out == "hello"
    payload = fake_client.calls[0]["json"]
    assert fake_client.calls[0]["path"] == "/v1/chat/completions"
    assert payload["presence_penalty"] == 0.1
    assert payload["frequency_penalty"] == 0.2
    assert payload["max_tokens"] == 900
    assert "response_format" not in payload
    assert "json_mode" not in ModelPolicy.model_fields


def test_generate_retries_then_raises_provider_failure():
    selector = ModelSelector(base_url="https://api.openai.com", api_key="k")
    fake_client = DummyClient({"choices": [{"message": {"content": "late"}}]}, failures=5)
    selector._client = fake_client

    with pytest.raises(ProviderFailure):
        asyncio.run(selector.generate([{"role": "user", "content": "hi"}], _policy(max_retries=2)))
    assert len(fake_client.calls) == 2


def test_generate_recovers_on_second_attempt():
    selector = ModelSelector(base_url="https://api.openai.com", api_key="k")
    fake_client = DummyClient({"choices": [{"message": {"content": "ok"}}]}, failures=1)
    selector._client = fake_client

    out = asyncio.run(selector.generate([{"role": "user", "content": "hi"}], _policy(max_retries=2)))

    assert out == "ok"
    assert len(fake_client.calls) == 2


def test_generate_without_key_is_configuration_missing():
    selector = ModelSelector(base_url="https://api.openai.com")
    with pytest.raises(ConfigurationMissing):
        asyncio.run(selector.generate([{"role": "user", "content": "hi"}], _policy()))


def test_openai_embeddings_keep_input_order():
    selector = ModelSelector(base_url="https://api.openai.com", api_key="k", embedding_model="emb")
    fake_client = DummyClient(
        {"data": [{"index": 1, "embedding": [0.0, 1.0]}, {"index": 0, "embedding": [1.0, 0.0]}]}
    )
    selector._client = fake_client

    vectors = asyncio.run(selector.embed(["first", "second"]))

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert fake_client.calls[0]["path"] == "/v1/embeddings"
    assert fake_client.calls[0]["json"] == {"model": "emb", "input": ["first", "second"]}


def test_ollama_embeddings_use_embed_endpoint():
    selector = ModelSelector(base_url="http://localhost:11434", embedding_model="nomic-embed-text")
    fake_client = DummyClient({"embeddings": [[0.5, 0.5]]})
    selector._client = fake_client

    assert asyncio.run(selector.embed(["x"])) == [[0.5, 0.5]]
    assert fake_client.calls[0]["path"] == "/api/embed"


def test_embedding_count_mismatch_is_provider_failure():
    selector = ModelSelector(base_url="http://localhost:11434")
    selector._client = DummyClient({"embeddings": [[0.5, 0.5]]})

    with pytest.raises(ProviderFailure):
        asyncio.run(selector.embed(["a", "b"]))
