"""
Observability Layer: structured events for command turns and provider calls.

Every event is one JSON line on the "observability" logger carrying the
conversation id, a short trace id and any bound turn fields (route, locale).
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("observability")

SERVICE_NAME = "terminal-orchestrator"
_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class Observability:
    """Event emitter scoped to one conversation turn."""

    def __init__(self, conversation_id: str | None = None, **fields: Any):
        self.conversation_id = conversation_id or ""
        self.trace_id = uuid.uuid4().hex[:12]
        self.fields: dict[str, Any] = {}
        self.bind(**fields)

    def bind(self, **fields: Any) -> "Observability":
        """Attach turn fields (route, locale, ...) to every later event. None values are skipped."""
        self.fields.update({key: value for key, value in fields.items() if value is not None})
        return self

    def log_event(self, event_type: str, payload: dict[str, Any] | None = None, level: str = "INFO") -> None:
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "service": SERVICE_NAME,
            "event": event_type,
            "conversation_id": self.conversation_id,
            "trace_id": self.trace_id,
            **self.fields,
            **(payload or {}),
        }
        logger.log(_LEVELS.get(level.upper(), logging.INFO), json.dumps(entry, ensure_ascii=False, default=str))

    @contextmanager
    def measure(self, operation: str, metadata: dict[str, Any] | None = None):
        """Time a provider or store call and emit one `call_timing` event."""
        started = time.perf_counter()
        outcome: dict[str, Any] = {"ok": True}
        try:
            yield
        except Exception as e:
            outcome = {"ok": False, "error_type": type(e).__name__, "error": str(e)}
            raise
        finally:
            self.log_event(
                "call_timing",
                {
                    "operation": operation,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    **outcome,
                    **(metadata or {}),
                },
                level="INFO" if outcome["ok"] else "WARNING",
            )
