"""
Runtime configuration read from the environment.

Missing optional credentials never raise: they leave the dependent
feature disabled. Call load_dotenv() before Settings.from_env().
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

_TRUE_VALUES = ("1", "true", "yes", "on")
DEFAULT_KNOWLEDGE_DIR = Path(__file__).resolve().parent.parent / "domains" / "static" / "data"


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = _env(name)
    if not raw:
        return default
    return raw.lower() in _TRUE_VALUES


class Settings(BaseModel):
    """Process-wide settings. Frozen after creation."""
    model_config = {"frozen": True, "protected_namespaces": ()}

    app_env: str = "development"
    host: str = "0.0.0.0"
    port: int = 5000
    log_level: str = "INFO"

    # Model layer
    model_provider: str = "auto"
    model_base_url: str = "https://api.openai.com"
    model_api_key: str = ""
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    model_timeout_seconds: float = 60.0
    model_max_retries: int = 2

    # Vector store
    supabase_url: str = ""
    supabase_api_key: str = ""
    rag_table: str = "documents"

    # Privileged operations
    admin_token: str = ""

    # Operator bridge
    telegram_bot_token: str = ""
    telegram_bridge_enabled: bool = True
    telegram_bridge_chat_id: str = ""
    telegram_poll_timeout_seconds: int = 20
    telegram_request_timeout_seconds: float = 35.0

    # Rate limiting
    rate_limit_window_ms: int = 60_000
    rate_limit_max: int = 120
    rate_limit_ai_window_ms: int = 60_000
    rate_limit_ai_max: int = 20
    rate_limit_sweep_seconds: float = 300.0

    # Curated knowledge
    knowledge_dir: str = Field(default=str(DEFAULT_KNOWLEDGE_DIR))
    subject_name: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        provider = _env("MODEL_PROVIDER", "auto").lower()
        api_key = _env("MODEL_API_KEY")
        if not api_key:
            if provider == "anthropic":
                api_key = _env("ANTHROPIC_API_KEY")
            else:
                api_key = _env("OPENAI_API_KEY")

        return cls(
            app_env=_env("APP_ENV", "development") or "development",
            host=_env("HOST", "0.0.0.0") or "0.0.0.0",
            port=_env_int("PORT", 5000),
            log_level=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
            model_provider=provider or "auto",
            model_base_url=_env("MODEL_BASE_URL", "https://api.openai.com") or "https://api.openai.com",
            model_api_key=api_key,
            chat_model=_env("CHAT_MODEL", "gpt-4o-mini") or "gpt-4o-mini",
            embedding_model=_env("EMBEDDING_MODEL", "text-embedding-3-small") or "text-embedding-3-small",
            model_timeout_seconds=max(1.0, _env_float("MODEL_TIMEOUT_SECONDS", 60.0)),
            model_max_retries=max(1, _env_int("MODEL_MAX_RETRIES", 2)),
            supabase_url=_env("SUPABASE_URL").rstrip("/"),
            supabase_api_key=_env("SUPABASE_API_KEY"),
            rag_table=_env("RAG_TABLE", "documents") or "documents",
            admin_token=_env("ADMIN_TOKEN"),
            telegram_bot_token=_env("TELEGRAM_BOT_TOKEN"),
            telegram_bridge_enabled=_env_bool("TELEGRAM_BRIDGE_ENABLED", True),
            telegram_bridge_chat_id=_env("TELEGRAM_BRIDGE_CHAT_ID"),
            telegram_poll_timeout_seconds=max(1, _env_int("TELEGRAM_POLL_TIMEOUT_SECONDS", 20)),
            telegram_request_timeout_seconds=_env_float("TELEGRAM_REQUEST_TIMEOUT_SECONDS", 35.0),
            rate_limit_window_ms=max(1, _env_int("RATE_LIMIT_WINDOW_MS", 60_000)),
            rate_limit_max=max(1, _env_int("RATE_LIMIT_MAX", 120)),
            rate_limit_ai_window_ms=max(1, _env_int("RATE_LIMIT_AI_WINDOW_MS", 60_000)),
            rate_limit_ai_max=max(1, _env_int("RATE_LIMIT_AI_MAX", 20)),
            rate_limit_sweep_seconds=max(1.0, _env_float("RATE_LIMIT_SWEEP_SECONDS", 300.0)),
            knowledge_dir=_env("KNOWLEDGE_DIR") or str(DEFAULT_KNOWLEDGE_DIR),
            subject_name=_env("SUBJECT_NAME"),
        )

    @property
    def vector_store_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_api_key)

    @property
    def bridge_configured(self) -> bool:
        return bool(
            self.telegram_bridge_enabled and self.telegram_bot_token and self.telegram_bridge_chat_id
        )
