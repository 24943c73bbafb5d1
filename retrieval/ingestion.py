"""
Knowledge ingestion into the vector store.

- ingest: embed contents and insert {content, embedding} rows
- ingest_bilingual: translate, then store EN:/FI: variants side by side
- seed_from_knowledge: chunk the curated records into [en]/[fi] lines
"""

from __future__ import annotations

import logging
from typing import Iterable

from domains.static.knowledge import KnowledgeRecord
from memory.store import VectorStore
from models.selector import ModelSelector
from observability.logger import Observability
from shared.errors import ConfigurationMissing, ProviderFailure, RequestValidationError, VectorStoreError
from shared.models import ModelPolicy

logger = logging.getLogger(__name__)

SEED_BATCH_SIZE = 64
LOCALE_NAMES = {"en": "English", "fi": "Finnish"}


def knowledge_chunks(record: KnowledgeRecord, locale: str) -> list[str]:
    """One retrievable line per fact, tagged with `[<locale>] `."""
    lines = [
        f"{record.name} - {record.role} - Based in {record.based_in}" if record.name else "",
        f"Skills: {', '.join(record.skills)}" if record.skills else "",
    ]
    lines += [f"Project: {p.name}. {p.description}" for p in record.projects]
    lines += [f"Experience: {line}" for line in record.experience]
    lines += [f"Feature: {line}" for line in record.features]
    lines += [f"Tip: {line}" for line in record.tips]
    lines += [f"Education: {line}" for line in record.education_list]
    lines += [f"Tech: {line}" for line in record.technologies_list]
    return [f"[{locale}] {line.strip()}" for line in lines if line.strip()]


class KnowledgeIngestor:
    """Writes embedded knowledge rows into the configured table."""

    def __init__(
        self,
        model_selector: ModelSelector,
        store: VectorStore | None,
        table: str = "documents",
        chat_model: str = "gpt-4o-mini",
    ):
        self.model_selector = model_selector
        self.store = store
        self.table = table
        self.translation_policy = ModelPolicy(
            model_name=chat_model,
            temperature=0.2,
            max_tokens=300,
            timeout_seconds=30.0,
            max_retries=1,
        )

    def _require_store(self) -> VectorStore:
        if self.store is None:
            raise ConfigurationMissing("Vector store is not configured")
        if not self.model_selector.embeddings_available:
            raise ConfigurationMissing("Embedding provider is not configured")
        return self.store

    async def ingest(self, contents: list[str]) -> tuple[int, str]:
        """Embed all contents in one call and insert them. Returns (inserted, table)."""
        contents = [str(c or "") for c in contents]
        if not contents:
            raise RequestValidationError("items[] required")
        store = self._require_store()

        vectors = await self.model_selector.embed(contents)
        rows = [{"content": content, "embedding": vector} for content, vector in zip(contents, vectors)]
        obs = Observability()
        try:
            with obs.measure("vector_insert", {"table": self.table, "rows": len(rows)}):
                inserted = await store.insert(self.table, rows)
        except VectorStoreError as e:
            raise ProviderFailure(f"Insert into {self.table} failed: {e.message}") from e
        return inserted, self.table

    async def translate(self, text: str, target_locale: str) -> str:
        prompt = (
            f"Translate the following text to {LOCALE_NAMES[target_locale]}. "
            "Output ONLY the translation, no quotes, no commentary."
        )
        translated = await self.model_selector.generate(
            [
                {"role": "system", "content": prompt},
                {"role": "user", "content": text},
            ],
            self.translation_policy,
        )
        return str(translated).strip()

    async def ingest_bilingual(self, text: str, source_locale: str = "en") -> tuple[int, str, list[str]]:
        """Store the text and its translation as `EN: ...` and `FI: ...` rows."""
        raw = (text or "").strip()
        if not raw:
            raise RequestValidationError("text required")
        self._require_store()

        source = "fi" if source_locale == "fi" else "en"
        target = "en" if source == "fi" else "fi"
        translated = await self.translate(raw, target)
        if not translated:
            raise ProviderFailure("translation failed")

        variants = {source: raw, target: translated}
        inserted, table = await self.ingest([f"EN: {variants['en']}", f"FI: {variants['fi']}"])
        return inserted, table, ["en", "fi"]

    async def seed_from_knowledge(self, records: dict[str, KnowledgeRecord]) -> int:
        """Chunk every locale's record and ingest in batches. Returns total rows inserted."""
        texts: list[str] = []
        for locale, record in records.items():
            texts.extend(knowledge_chunks(record, locale))
        logger.info("Preparing %d knowledge chunks for embedding", len(texts))

        inserted = 0
        for batch in _batches(texts, SEED_BATCH_SIZE):
            count, _ = await self.ingest(batch)
            inserted += count
            logger.info("Inserted %d/%d into %s", inserted, len(texts), self.table)
        return inserted


def _batches(items: list[str], size: int) -> Iterable[list[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]
