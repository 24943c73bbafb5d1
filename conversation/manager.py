"""
Conversation State Manager: in-memory rolling history.

Responsibility:
- Keep a bounded, ordered history per conversation id
- Publish every logged message to live subscribers and the operator bridge

Prohibitions:
- Never alters business rules
- Never persists anything beyond the process lifetime
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from typing import Awaitable, Callable

from conversation.bus import BroadcastBus
from observability.best_effort import BestEffort
from shared.models import ChatEvent, HistoryEntry

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50

Mirror = Callable[[str, str, str], Awaitable[None]]


def new_conversation_id() -> str:
    return uuid.uuid4().hex[:16]


class ConversationStore:
    """Bounded FIFO history per conversation. Ids are never evicted."""

    def __init__(self, limit: int = HISTORY_LIMIT):
        self.limit = limit
        self._histories: dict[str, deque[HistoryEntry]] = {}

    def _history_for(self, conversation_id: str) -> deque[HistoryEntry]:
        history = self._histories.get(conversation_id)
        if history is None:
            history = deque(maxlen=self.limit)
            self._histories[conversation_id] = history
        return history

    def append(self, conversation_id: str, entry: HistoryEntry) -> None:
        self._history_for(conversation_id).append(entry)

    def history(self, conversation_id: str) -> list[HistoryEntry]:
        """Snapshot of the conversation, oldest first."""
        return list(self._histories.get(conversation_id, ()))

    def recent(self, conversation_id: str, n: int) -> list[HistoryEntry]:
        if n <= 0:
            return []
        return self.history(conversation_id)[-n:]

    def __len__(self) -> int:
        return len(self._histories)


class ConversationService:
    """Single entry point for logging chat traffic."""

    def __init__(
        self,
        store: ConversationStore,
        bus: BroadcastBus,
        best_effort: BestEffort,
        mirror: Mirror | None = None,
    ):
        self.store = store
        self.bus = bus
        self.best_effort = best_effort
        self.mirror = mirror

    def log_message(self, conversation_id: str | None, author: str, text: str) -> str:
        """
        Broadcast, mirror (fire-and-forget) and append to history.

        Returns the conversation id, generating one when absent. Failures in
        any of the three sinks are reported, never raised.
        """
        cid = str(conversation_id or new_conversation_id())
        now = time.time()

        self.bus.broadcast(
            cid,
            ChatEvent(type="message", conversation_id=cid, author=author, text=text, timestamp=now),
        )

        if self.mirror is not None:
            self.best_effort.run("mirror", self._schedule_mirror, cid, author, text, conversation_id=cid)

        self.best_effort.run(
            "history",
            self.store.append,
            cid,
            HistoryEntry(author=author, text=text, timestamp=now),
            conversation_id=cid,
        )
        return cid

    def _schedule_mirror(self, cid: str, author: str, text: str) -> None:
        self.best_effort.fire("mirror", self.mirror(cid, author, text), conversation_id=cid)
