from __future__ import annotations

import asyncio

import httpx
import pytest

from memory.store import InMemoryVectorStore, SupabaseVectorStore, VectorStore
from retrieval.assembler import (
    ContextAssembler,
    detect_language,
    embedding_text,
    format_context,
    prefer_locale,
)
from shared.errors import ProviderFailure, VectorStoreError
from shared.models import RetrievalResult


class FakeSelector:
    def __init__(self, available: bool = True):
        self.embeddings_available = available
        self.embedded: list[list[str]] = []

    async def embed(self, texts, session_id=None):
        self.embedded.append(list(texts))
        return [[1.0, 0.0] for _ in texts]


class ScriptedStore(VectorStore):
    """Fails the listed functions, returns rows for the others."""

    def __init__(self, rows, failing=()):
        self.rows = rows
        self.failing = set(failing)
        self.calls: list[tuple[str, dict]] = []

    async def rpc(self, name, params):
        self.calls.append((name, params))
        if name in self.failing:
            raise VectorStoreError(f"function {name} does not exist", code="42883")
        return list(self.rows)

    async def insert(self, table, rows):
        return len(rows)


def _r(content: str, score: float) -> RetrievalResult:
    return RetrievalResult(content=content, similarity_score=score, language_tag=detect_language(content))


def test_detect_language_prefixes():
    assert detect_language("EN: hello") == "en"
    assert detect_language("  [fi] hei") == "fi"
    assert detect_language("fi: hei") == "fi"
    assert detect_language("no tag") is None


def test_prefer_locale_is_a_stable_partition():
    results = [_r("EN: a", 0.9), _r("FI: b", 0.8), _r("EN: c", 0.7), _r("FI: d", 0.6), _r("x", 0.5)]

    reordered = prefer_locale(results, "fi")

    assert [r.content for r in reordered] == ["FI: b", "FI: d", "EN: a", "EN: c", "x"]


def test_prefer_locale_exact_filters_other_languages():
    results = [_r("EN: a", 0.9), _r("FI: b", 0.8)]
    assert [r.content for r in prefer_locale(results, "en", exact=True)] == ["EN: a"]


def test_pronoun_hint_only_changes_embedding_text():
    assert embedding_text("What did he build?", "en", "Ada") == "What did he build? (about Ada)"
    assert embedding_text("Mitä hän osaa?", "fi", "Ada") == "Mitä hän osaa? (about Ada)"
    assert embedding_text("What is the theme?", "en", "Ada") == "What is the theme?"
    assert embedding_text("What did he build?", "en", "") == "What did he build?"


def test_format_context_numbers_entries():
    assert format_context([_r("one", 0.9), _r("two", 0.8)]) == "[#1] one\n\n[#2] two"


def test_search_falls_back_to_legacy_strategy_with_identical_params():
    store = ScriptedStore([{"content": "EN: x", "similarity": 0.8}], failing={"match_documents"})
    assembler = ContextAssembler(FakeSelector(), store)

    outcome = asyncio.run(assembler.search("q", match_count=3, min_similarity=0.4))

    assert outcome.strategy_used == "match_kb_chunks"
    assert [name for name, _ in store.calls] == ["match_documents", "match_kb_chunks"]
    assert store.calls[0][1] == store.calls[1][1] == {
        "query_embedding": [1.0, 0.0],
        "match_count": 3,
        "min_similarity": 0.4,
    }
    assert outcome.results[0].similarity_score == 0.8
    assert outcome.results[0].language_tag == "en"


def test_search_raises_provider_failure_after_two_attempts():
    store = ScriptedStore([], failing={"match_documents", "match_kb_chunks"})
    assembler = ContextAssembler(FakeSelector(), store, strategies=("match_documents", "match_kb_chunks", "third"))

    with pytest.raises(ProviderFailure):
        asyncio.run(assembler.search("q"))
    assert len(store.calls) == 2


def test_search_caps_after_reordering():
    rows = [
        {"content": "EN: a", "similarity": 0.9},
        {"content": "EN: b", "similarity": 0.8},
        {"content": "FI: c", "score": 0.7},
    ]
    assembler = ContextAssembler(FakeSelector(), ScriptedStore(rows))

    outcome = asyncio.run(assembler.search("q", match_count=2, preferred_locale="fi"))

    assert [r.content for r in outcome.results] == ["FI: c", "EN: a"]
    assert outcome.results[0].similarity_score == 0.7


def test_assemble_degrades_to_empty_context_when_search_fails():
    store = ScriptedStore([], failing={"match_documents", "match_kb_chunks"})
    assembler = ContextAssembler(FakeSelector(), store, subject_name="Ada")

    assert asyncio.run(assembler.assemble("what did he do", "en")) == ""


def test_assemble_degrades_when_store_returns_a_non_json_body():
    store = SupabaseVectorStore("https://project.supabase.co", "key")
    store._client = httpx.AsyncClient(
        base_url=store.url,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>")),
    )
    assembler = ContextAssembler(FakeSelector(), store, subject_name="Ada")

    assert asyncio.run(assembler.assemble("what does he build?", "en")) == ""


def test_assemble_degrades_on_unexpected_store_errors():
    class ExplodingStore(ScriptedStore):
        async def rpc(self, name, params):
            raise RuntimeError("driver bug")

    assembler = ContextAssembler(FakeSelector(), ExplodingStore([]))

    assert asyncio.run(assembler.assemble("q", "en")) == ""


def test_assemble_is_skipped_without_store_or_embeddings():
    selector = FakeSelector(available=False)
    assert asyncio.run(ContextAssembler(selector, InMemoryVectorStore()).assemble("q", "en")) == ""
    assert selector.embedded == []
    assert asyncio.run(ContextAssembler(FakeSelector(), None).assemble("q", "en")) == ""


def test_assemble_uses_command_path_parameters_and_subject_hint():
    store = ScriptedStore([{"content": "FI: hän koodaa", "similarity": 0.5}, {"content": "EN: codes", "similarity": 0.6}])
    selector = FakeSelector()
    assembler = ContextAssembler(selector, store, subject_name="Ada")

    context = asyncio.run(assembler.assemble("mitä hän tekee", "fi"))

    assert selector.embedded == [["mitä hän tekee (about Ada)"]]
    assert store.calls[0][1]["match_count"] == 6
    assert store.calls[0][1]["min_similarity"] == 0.3
    assert context == "[#1] FI: hän koodaa\n\n[#2] EN: codes"


def test_in_memory_store_search_and_missing_function():
    store = InMemoryVectorStore(functions=("match_kb_chunks",))
    asyncio.run(store.insert("documents", [
        {"content": "EN: near", "embedding": [1.0, 0.0]},
        {"content": "EN: far", "embedding": [0.0, 1.0]},
    ]))
    assembler = ContextAssembler(FakeSelector(), store)

    outcome = asyncio.run(assembler.search("q", match_count=5, min_similarity=0.5))

    assert outcome.strategy_used == "match_kb_chunks"
    assert [r.content for r in outcome.results] == ["EN: near"]
