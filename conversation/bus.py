"""
Broadcast Bus: in-process fan-out of chat events per conversation.

Sinks are plain callables. A sink that raises is reported on the
best-effort channel and never prevents delivery to the others.
"""

from __future__ import annotations

import logging
from typing import Callable

from observability.best_effort import BestEffort
from shared.models import ChatEvent

logger = logging.getLogger(__name__)

Sink = Callable[[ChatEvent], None]


class BroadcastBus:
    """conversation id -> set of live sinks."""

    def __init__(self, best_effort: BestEffort):
        self._subscribers: dict[str, set[Sink]] = {}
        self.best_effort = best_effort

    def subscribe(self, conversation_id: str, sink: Sink) -> Callable[[], None]:
        """Register sink; returns an idempotent unsubscribe callable."""
        self._subscribers.setdefault(conversation_id, set()).add(sink)

        def unsubscribe() -> None:
            sinks = self._subscribers.get(conversation_id)
            if sinks is None:
                return
            sinks.discard(sink)
            if not sinks:
                del self._subscribers[conversation_id]

        return unsubscribe

    def broadcast(self, conversation_id: str, event: ChatEvent) -> int:
        """Deliver event to the current subscribers. Returns the number of successful deliveries."""
        sinks = self._subscribers.get(conversation_id)
        if not sinks:
            return 0
        delivered = 0
        for sink in list(sinks):
            try:
                sink(event)
                delivered += 1
            except Exception as e:
                self.best_effort.report("broadcast", e, conversation_id)
        return delivered

    def subscriber_count(self, conversation_id: str) -> int:
        return len(self._subscribers.get(conversation_id, ()))

    def active_conversations(self) -> list[dict[str, int | str]]:
        return [
            {"conversationId": cid, "subscribers": len(sinks)}
            for cid, sinks in self._subscribers.items()
        ]
