"""
Shared Pydantic models for all layers.
All contexts are immutable (frozen) after creation.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

SUPPORTED_LOCALES = ("en", "fi")
DEFAULT_LOCALE = "en"


# ─── Entry Layer ───────────────────────────────────────────────

class EntryRequest(BaseModel):
    """Normalized input from any entry adapter."""
    model_config = {"frozen": True}

    session_id: str
    input_text: str
    locale: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ─── Command Layer ─────────────────────────────────────────────

class CanonicalCommand(str, Enum):
    """Closed set of terminal commands. FREEFORM is the fallback variant."""

    ABOUT = "about"
    PROJECTS = "projects"
    SKILLS = "skills"
    EXPERIENCE = "experience"
    FEATURES = "features"
    TIPS = "tips"
    CREDITS = "credits"
    VERSION = "version"
    CHANGELOG = "changelog"
    FAQ = "faq"
    STORY = "story"
    GITHUB = "github"
    INTERNSHIP = "internship"
    LANGUAGES = "languages"
    TECHNOLOGIES = "technologies"
    EDUCATION = "education"
    DIR = "dir"
    LS = "ls"
    COMMANDS = "commands"
    HELP = "help"
    BANDERSNATCH = "bandersnatch"
    CONTROL = "control"
    MIRROR = "mirror"
    FREEFORM = "freeform"


class ResolvedCommand(BaseModel):
    """Outcome of command resolution. Pure data, no side effects."""
    model_config = {"frozen": True}

    command: CanonicalCommand
    locale: str = Field(..., description="Effective locale for this request")
    processed_text: str = Field(..., description="Input with any one-off locale tag stripped")
    raw_text: str = Field(default="", description="Input exactly as received")
    override_locale: str | None = Field(default=None, description="Locale from a leading '<locale>: ' tag")

    @property
    def is_freeform(self) -> bool:
        return self.command is CanonicalCommand.FREEFORM


class CommandResult(BaseModel):
    """Reply returned by the command pipeline."""
    model_config = {"frozen": True}

    response_text: str
    conversation_id: str
    status: str = Field(default="ok", description="'ok', 'unavailable' or 'failed'")
    route: str = Field(default="static", description="'static', 'easter_egg', 'contact' or 'ai'")


# ─── Conversation Layer ────────────────────────────────────────

class HistoryEntry(BaseModel):
    """One message in a conversation's rolling history."""
    model_config = {"frozen": True}

    author: str = Field(..., description="'user', 'bot', 'admin' or 'bridge:<source>'")
    text: str
    timestamp: float = Field(default_factory=time.time)


class ChatEvent(BaseModel):
    """Event delivered to live subscribers of a conversation."""
    model_config = {"frozen": True}

    type: str = Field(..., description="'connected' or 'message'")
    conversation_id: str
    author: str | None = None
    text: str | None = None
    timestamp: float = Field(default_factory=time.time)

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "conversationId": self.conversation_id,
            "timestamp": self.timestamp,
        }
        if self.author is not None:
            payload["author"] = self.author
        if self.text is not None:
            payload["text"] = self.text
        return payload


# ─── Retrieval Layer ───────────────────────────────────────────

class RetrievalResult(BaseModel):
    """A vector-store match. language_tag is inferred from the content prefix."""
    model_config = {"frozen": True}

    content: str
    similarity_score: float = 0.0
    language_tag: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "similarityScore": self.similarity_score,
            "languageTag": self.language_tag,
        }


class SearchOutcome(BaseModel):
    """Results of a vector search plus the strategy that produced them."""
    model_config = {"frozen": True}

    results: list[RetrievalResult] = Field(default_factory=list)
    strategy_used: str = ""


# ─── Model Layer (Policy) ──────────────────────────────────────

class ModelPolicy(BaseModel):
    """Configuration for Model Layer execution."""
    model_config = {"frozen": True}
    model_name: str
    temperature: float = 0.0
    timeout_seconds: float = 30.0
    max_retries: int = 3
    max_tokens: int = 900
    presence_penalty: float | None = None
    frequency_penalty: float | None = None


class CompletionResult(BaseModel):
    """Sanitized completion text with its availability status."""
    model_config = {"frozen": True}

    text: str
    status: str = Field(default="ok", description="'ok', 'unavailable' or 'failed'")
    grounded: bool = False
