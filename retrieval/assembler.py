"""
Context Assembler: retrieval-augmented grounding for free-form questions.

Responsibility:
- Embed the query (with a subject hint for third-person pronoun questions)
- Search the vector store through the ordered strategy list
- Prefer results in the request locale (stable partition, optional exact filter)
- Render the numbered context block consumed by the completion step
"""

from __future__ import annotations

import logging
import re

from memory.store import SEARCH_STRATEGIES, VectorStore, search_with_fallback
from models.selector import ModelSelector
from shared.errors import AppError, ConfigurationMissing, ProviderFailure, VectorStoreError
from shared.models import RetrievalResult, SearchOutcome

logger = logging.getLogger(__name__)

COMMAND_MATCH_COUNT = 6
COMMAND_MIN_SIMILARITY = 0.3

_LANGUAGE_PREFIXES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("en", re.compile(r"^\s*(?:EN:|\[en\])", re.IGNORECASE)),
    ("fi", re.compile(r"^\s*(?:FI:|\[fi\])", re.IGNORECASE)),
)

PRONOUN_PATTERNS: dict[str, re.Pattern[str]] = {
    "en": re.compile(r"\b(he|him|his)\b", re.IGNORECASE),
    "fi": re.compile(r"\b(hän|hänen|häntä|he|heidän|heitä)\b", re.IGNORECASE),
}


def detect_language(content: str) -> str | None:
    """Language tag from the content prefix convention, or None."""
    for tag, pattern in _LANGUAGE_PREFIXES:
        if pattern.match(content or ""):
            return tag
    return None


def prefer_locale(
    results: list[RetrievalResult],
    locale: str | None,
    exact: bool = False,
) -> list[RetrievalResult]:
    """Move locale-matching results first, keeping each group's order. `exact` drops the rest."""
    if not locale:
        return list(results)
    matching = [r for r in results if r.language_tag == locale]
    if exact:
        return matching
    others = [r for r in results if r.language_tag != locale]
    return matching + others


def embedding_text(query: str, locale: str, subject_name: str) -> str:
    """Text sent to the embedder. Adds the subject for pronoun-only references."""
    pattern = PRONOUN_PATTERNS.get(locale, PRONOUN_PATTERNS["en"])
    if subject_name and pattern.search(query):
        return f"{query} (about {subject_name})"
    return query


def format_context(results: list[RetrievalResult]) -> str:
    return "\n\n".join(f"[#{i}] {r.content}" for i, r in enumerate(results, start=1))


class ContextAssembler:
    """Builds grounding context from the vector store."""

    def __init__(
        self,
        model_selector: ModelSelector,
        store: VectorStore | None,
        subject_name: str = "",
        strategies: tuple[str, ...] = SEARCH_STRATEGIES,
    ):
        self.model_selector = model_selector
        self.store = store
        self.subject_name = subject_name
        self.strategies = strategies

    @property
    def enabled(self) -> bool:
        return self.store is not None and self.model_selector.embeddings_available

    async def search(
        self,
        query: str,
        match_count: int = 4,
        min_similarity: float = 0.5,
        preferred_locale: str | None = None,
        exact: bool = False,
        session_id: str | None = None,
    ) -> SearchOutcome:
        """
        Embed, search and reorder. Raises ProviderFailure when every strategy
        fails, ConfigurationMissing when retrieval is not configured.
        """
        if self.store is None:
            raise ConfigurationMissing("Vector store is not configured")

        vectors = await self.model_selector.embed([query], session_id=session_id)
        params = {
            "query_embedding": vectors[0],
            "match_count": match_count,
            "min_similarity": min_similarity,
        }
        try:
            rows, strategy = await search_with_fallback(
                self.store, params, self.strategies, session_id=session_id
            )
        except VectorStoreError as e:
            raise ProviderFailure(f"Vector search failed: {e.message}") from e

        results = [
            RetrievalResult(
                content=str(row.get("content") or ""),
                similarity_score=float(row.get("similarity", row.get("score")) or 0.0),
                language_tag=detect_language(str(row.get("content") or "")),
            )
            for row in rows
        ]
        results = prefer_locale(results, preferred_locale, exact)[:match_count]
        return SearchOutcome(results=results, strategy_used=strategy)

    async def assemble(self, query: str, locale: str, session_id: str | None = None) -> str:
        """Grounding context for the command path; empty when unavailable."""
        if not self.enabled:
            return ""
        try:
            outcome = await self.search(
                embedding_text(query, locale, self.subject_name),
                match_count=COMMAND_MATCH_COUNT,
                min_similarity=COMMAND_MIN_SIMILARITY,
                preferred_locale=locale,
                session_id=session_id,
            )
        except (AppError, VectorStoreError) as e:
            logger.warning("Retrieval degraded to empty context: %s", e)
            return ""
        except Exception:
            logger.exception("Unexpected retrieval failure; continuing without context")
            return ""
        return format_context(outcome.results)
