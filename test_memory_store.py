from __future__ import annotations

import asyncio

import httpx
import pytest

from memory.store import (
    MAX_SEARCH_ATTEMPTS,
    InMemoryVectorStore,
    SupabaseVectorStore,
    search_with_fallback,
)
from shared.errors import VectorStoreError


class DummyResponse:
    def __init__(self, status_code: int, payload, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.content = text.encode() if payload is None else b"x"

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class DummyAsyncClient:
    def __init__(self, responses: dict[str, DummyResponse]):
        self.responses = responses
        self.calls: list[dict] = []

    async def post(self, path, json=None, headers=None):
        self.calls.append({"path": path, "json": json, "headers": headers or {}})
        return self.responses[path]

    async def get(self, path):
        self.calls.append({"path": path})
        response = self.responses.get(path)
        if response is None:
            raise httpx.ConnectError("unreachable")
        return response

    async def aclose(self):
        return None


def _supabase(responses) -> tuple[SupabaseVectorStore, DummyAsyncClient]:
    store = SupabaseVectorStore("https://project.supabase.co/", "anon-key")
    client = DummyAsyncClient(responses)
    store._client = client
    return store, client


def test_in_memory_store_ranks_by_cosine_similarity():
    store = InMemoryVectorStore()

    async def scenario():
        await store.insert(
            "documents",
            [
                {"content": "EN: far", "embedding": [0.0, 1.0]},
                {"content": "EN: near", "embedding": [1.0, 0.1]},
                {"content": "EN: exact", "embedding": [1.0, 0.0]},
            ],
        )
        return await store.rpc(
            "match_documents",
            {"query_embedding": [1.0, 0.0], "match_count": 2, "min_similarity": 0.5},
        )

    rows = asyncio.run(scenario())

    assert [row["content"] for row in rows] == ["EN: exact", "EN: near"]


def test_in_memory_store_rejects_unknown_function():
    store = InMemoryVectorStore(functions=("match_kb_chunks",))
    with pytest.raises(VectorStoreError) as excinfo:
        asyncio.run(store.rpc("match_documents", {}))
    assert excinfo.value.code == "42883"


def test_search_with_fallback_uses_second_strategy():
    store = InMemoryVectorStore(functions=("match_kb_chunks",))
    rows, name = asyncio.run(search_with_fallback(store, {"query_embedding": [1.0]}))
    assert rows == []
    assert name == "match_kb_chunks"


def test_search_with_fallback_stops_after_two_attempts():
    store = InMemoryVectorStore(functions=("third",))
    strategies = ("first", "second", "third")

    with pytest.raises(VectorStoreError):
        asyncio.run(search_with_fallback(store, {}, strategies))
    assert MAX_SEARCH_ATTEMPTS == 2


def test_supabase_rpc_posts_params_to_named_function():
    store, client = _supabase(
        {"/rest/v1/rpc/match_documents": DummyResponse(200, [{"content": "EN: hi", "similarity": 0.9}])}
    )

    rows = asyncio.run(store.rpc("match_documents", {"match_count": 3}))

    assert rows == [{"content": "EN: hi", "similarity": 0.9}]
    assert client.calls[0]["json"] == {"match_count": 3}
    assert store.url == "https://project.supabase.co"


def test_supabase_rpc_error_carries_postgres_code():
    store, _ = _supabase(
        {
            "/rest/v1/rpc/match_documents": DummyResponse(
                404, {"code": "PGRST202", "message": "Could not find the function"}
            )
        }
    )

    with pytest.raises(VectorStoreError) as excinfo:
        asyncio.run(store.rpc("match_documents", {}))

    assert excinfo.value.code == "PGRST202"
    assert "Could not find" in excinfo.value.message


def test_supabase_insert_asks_for_representation():
    store, client = _supabase({"/rest/v1/documents": DummyResponse(201, [{"id": 1}, {"id": 2}])})

    inserted = asyncio.run(store.insert("documents", [{"content": "a"}, {"content": "b"}]))

    assert inserted == 2
    assert client.calls[0]["headers"] == {"Prefer": "return=representation"}


def test_supabase_ping_reports_unreachable_store():
    store, _ = _supabase({})
    assert asyncio.run(store.ping()) is False

    healthy, _ = _supabase({"/auth/v1/settings": DummyResponse(200, {})})
    assert asyncio.run(healthy.ping()) is True


def test_supabase_non_json_success_body_is_a_store_error():
    html = DummyResponse(200, None, text="<html>gateway</html>")
    store, _ = _supabase({"/rest/v1/rpc/match_documents": html, "/rest/v1/documents": html})

    with pytest.raises(VectorStoreError):
        asyncio.run(store.rpc("match_documents", {}))
    with pytest.raises(VectorStoreError):
        asyncio.run(store.insert("documents", [{"content": "a"}]))
