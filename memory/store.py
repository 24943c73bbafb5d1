"""
Vector store abstractions and implementations.

Design goals:
- Clear API (rpc/insert/ping) shared by retrieval and ingestion
- Named search strategies tried in order, one result row shape
- Structured store errors (VectorStoreError) instead of raw HTTP failures
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Any

import httpx

from observability.logger import Observability
from shared.config import Settings
from shared.errors import VectorStoreError

logger = logging.getLogger(__name__)

SEARCH_STRATEGIES: tuple[str, ...] = ("match_documents", "match_kb_chunks")
MAX_SEARCH_ATTEMPTS = 2


class VectorStore(ABC):
    """Vector-capable store used by retrieval and ingestion."""

    @abstractmethod
    async def rpc(self, name: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Call a named search function. Raises VectorStoreError on a structured failure."""

    @abstractmethod
    async def insert(self, table: str, rows: list[dict[str, Any]]) -> int:
        """Insert rows into table and return the number stored."""

    async def ping(self) -> bool:
        """Cheap reachability check."""
        return True

    async def aclose(self) -> None:
        return None


class SupabaseVectorStore(VectorStore):
    """Supabase (PostgREST) backed store."""

    def __init__(self, url: str, api_key: str, timeout_seconds: float = 15.0):
        self.url = url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout_seconds,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseVectorStore | None":
        if not settings.vector_store_configured:
            return None
        return cls(settings.supabase_url, settings.supabase_api_key)

    @staticmethod
    def _error_from(response: httpx.Response) -> VectorStoreError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = str(body.get("message") or response.text or f"HTTP {response.status_code}")
        code = body.get("code")
        return VectorStoreError(message, code=str(code) if code is not None else None)

    async def rpc(self, name: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            response = await self._client.post(f"/rest/v1/rpc/{name}", json=params)
        except httpx.HTTPError as e:
            raise VectorStoreError(f"rpc {name} transport error: {e}") from e
        if response.status_code >= 400:
            raise self._error_from(response)
        try:
            data = response.json()
        except ValueError as e:
            raise VectorStoreError(f"rpc {name} returned a non-JSON body: {e}") from e
        return data if isinstance(data, list) else []

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        try:
            response = await self._client.post(
                f"/rest/v1/{table}",
                json=rows,
                headers={"Prefer": "return=representation"},
            )
        except httpx.HTTPError as e:
            raise VectorStoreError(f"insert into {table} transport error: {e}") from e
        if response.status_code >= 400:
            raise self._error_from(response)
        try:
            data = response.json() if response.content else []
        except ValueError as e:
            raise VectorStoreError(f"insert into {table} returned a non-JSON body: {e}") from e
        return len(data) if isinstance(data, list) and data else len(rows)

    async def ping(self) -> bool:
        try:
            response = await self._client.get("/auth/v1/settings")
        except httpx.HTTPError as e:
            logger.warning("Supabase ping failed: %s", e)
            return False
        return response.status_code < 500

    async def aclose(self) -> None:
        await self._client.aclose()


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryVectorStore(VectorStore):
    """Process-local store with cosine search. Only `functions` are callable as rpc."""

    def __init__(self, functions: tuple[str, ...] = SEARCH_STRATEGIES):
        self.functions = set(functions)
        self.tables: dict[str, list[dict[str, Any]]] = {}

    async def rpc(self, name: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        if name not in self.functions:
            raise VectorStoreError(f"function public.{name} does not exist", code="42883")
        query = params.get("query_embedding") or []
        min_similarity = float(params.get("min_similarity", 0.0))
        match_count = int(params.get("match_count", 10))
        scored = [
            {"content": row.get("content", ""), "similarity": _cosine(query, row.get("embedding") or [])}
            for rows in self.tables.values()
            for row in rows
        ]
        scored = [row for row in scored if row["similarity"] >= min_similarity]
        scored.sort(key=lambda row: row["similarity"], reverse=True)
        return scored[:match_count]

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> int:
        self.tables.setdefault(table, []).extend(dict(row) for row in rows)
        return len(rows)


async def search_with_fallback(
    store: VectorStore,
    params: dict[str, Any],
    strategies: tuple[str, ...] = SEARCH_STRATEGIES,
    session_id: str | None = None,
) -> tuple[list[dict[str, Any]], str]:
    """
    Try each named search function in order with identical params.

    A VectorStoreError moves on to the next strategy; at most
    MAX_SEARCH_ATTEMPTS are made. Raises the last error when all fail.
    """
    obs = Observability(session_id)
    last_error: VectorStoreError | None = None
    for name in strategies[:MAX_SEARCH_ATTEMPTS]:
        try:
            with obs.measure("vector_search", {"strategy": name}):
                rows = await store.rpc(name, params)
            return rows, name
        except VectorStoreError as e:
            last_error = e
            logger.info("Search strategy %s failed (%s); trying next", name, e.code or e.message)
    raise last_error or VectorStoreError("No search strategies configured")
