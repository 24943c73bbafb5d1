"""
Curated knowledge records, one JSON file per locale.

Files are named knowledge.<locale>.json inside the knowledge directory.
A locale without its own file falls back to the default locale's file.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from shared.models import DEFAULT_LOCALE

logger = logging.getLogger(__name__)


class Project(BaseModel):
    name: str
    description: str = ""


class FaqItem(BaseModel):
    q: str
    a: str = ""


class VersionInfo(BaseModel):
    title: str = ""
    ui: str = ""
    server: str = ""


class GithubInfo(BaseModel):
    profile: str = ""
    repositories: list[str] = Field(default_factory=list)


class InternshipInfo(BaseModel):
    company: str = ""
    duration: str = ""
    role: str = ""


class DirectoryEntry(BaseModel):
    type: str = "file"
    name: str = ""
    size: int = 0


class DirectoryListing(BaseModel):
    volume: str = ""
    path: str = ""
    entries: list[DirectoryEntry] = Field(default_factory=list)


class RecruiterInfo(BaseModel):
    contact: str = ""
    resume: str = ""


class KnowledgeRecord(BaseModel):
    """Curated facts about the subject. Every field is optional."""
    model_config = {"frozen": True, "populate_by_name": True}

    name: str = ""
    role: str = ""
    based_in: str = ""
    skills: list[str] = Field(default_factory=list)
    projects: list[Project] = Field(default_factory=list)
    experience: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    tips: list[str] = Field(default_factory=list)
    credits_lines: list[str] = Field(default_factory=list, alias="creditsLines")
    version_info: VersionInfo = Field(default_factory=VersionInfo, alias="versionInfo")
    changelog: list[str] = Field(default_factory=list)
    faq: list[FaqItem] = Field(default_factory=list)
    story: list[str] = Field(default_factory=list)
    github: GithubInfo = Field(default_factory=GithubInfo)
    internship: InternshipInfo = Field(default_factory=InternshipInfo)
    languages_list: list[str] = Field(default_factory=list, alias="languagesList")
    technologies_list: list[str] = Field(default_factory=list, alias="technologiesList")
    education_list: list[str] = Field(default_factory=list, alias="educationList")
    directory: DirectoryListing = Field(default_factory=DirectoryListing)
    recruiter: RecruiterInfo = Field(default_factory=RecruiterInfo)

    def to_prompt_json(self) -> str:
        """Compact JSON used as low-confidence grounding for the completion step."""
        return json.dumps(
            self.model_dump(by_alias=True, exclude={"directory", "recruiter"}),
            ensure_ascii=False,
        )


class KnowledgeBase:
    """Loads and caches per-locale knowledge records."""

    def __init__(self, knowledge_dir: str | Path):
        self.knowledge_dir = Path(knowledge_dir)
        self._cache: dict[str, KnowledgeRecord] = {}

    def _path_for(self, locale: str) -> Path:
        return self.knowledge_dir / f"knowledge.{locale}.json"

    def _read(self, path: Path) -> dict[str, Any]:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def load(self, locale: str = DEFAULT_LOCALE) -> KnowledgeRecord:
        """Return the record for locale, falling back to the default locale, then to an empty record."""
        if locale in self._cache:
            return self._cache[locale]

        record: KnowledgeRecord | None = None
        for candidate in (locale, DEFAULT_LOCALE):
            path = self._path_for(candidate)
            if not path.exists():
                continue
            try:
                record = KnowledgeRecord.model_validate(self._read(path))
                break
            except (OSError, ValueError) as e:
                logger.error("Failed to load knowledge file %s: %s", path, e)

        if record is None:
            logger.warning("No knowledge record found for locale=%s in %s", locale, self.knowledge_dir)
            record = KnowledgeRecord()

        self._cache[locale] = record
        return record

    def subject_name(self, fallback: str = "") -> str:
        return self.load(DEFAULT_LOCALE).name or fallback
