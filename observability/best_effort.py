"""
Best-effort sinks.

Operations routed through a BestEffort sink are allowed to fail: the
failure is reported on a non-critical channel (structured log + counter)
and never propagates to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Callable, Coroutine

from pydantic import BaseModel

from observability.logger import Observability

logger = logging.getLogger(__name__)


class NonCriticalError(BaseModel):
    """A swallowed failure from a best-effort operation."""
    model_config = {"frozen": True}

    sink: str
    operation: str
    error: str
    error_type: str
    conversation_id: str | None = None


ErrorHook = Callable[[NonCriticalError], None]


class NonCriticalErrors:
    """Collects non-critical failures: logs them and keeps per-sink counts."""

    def __init__(self, hooks: list[ErrorHook] | None = None):
        self.counts: Counter[str] = Counter()
        self._hooks = list(hooks or [])

    def add_hook(self, hook: ErrorHook) -> None:
        self._hooks.append(hook)

    def report(self, failure: NonCriticalError) -> None:
        self.counts[failure.sink] += 1
        Observability(failure.conversation_id).log_event(
            "noncritical_failure",
            failure.model_dump(),
            level="WARNING",
        )
        for hook in self._hooks:
            try:
                hook(failure)
            except Exception as e:
                logger.debug("Non-critical error hook failed: %s", e)

    def snapshot(self) -> dict[str, int]:
        return dict(self.counts)


class BestEffort:
    """Runs operations whose failure is acceptable, reporting errors instead of raising."""

    def __init__(self, name: str, errors: NonCriticalErrors):
        self.name = name
        self.errors = errors
        self._tasks: set[asyncio.Task] = set()

    def report(self, operation: str, exc: BaseException, conversation_id: str | None) -> None:
        """Report a failure the caller already caught."""
        self.errors.report(
            NonCriticalError(
                sink=self.name,
                operation=operation,
                error=str(exc),
                error_type=type(exc).__name__,
                conversation_id=conversation_id,
            )
        )

    def run(
        self,
        operation: str,
        fn: Callable[..., Any],
        *args: Any,
        conversation_id: str | None = None,
    ) -> Any | None:
        """Call fn synchronously; return its result, or None if it raised."""
        try:
            return fn(*args)
        except Exception as e:
            self.report(operation, e, conversation_id)
            return None

    def fire(
        self,
        operation: str,
        coro: Coroutine[Any, Any, Any],
        conversation_id: str | None = None,
    ) -> asyncio.Task | None:
        """Schedule coro without awaiting it. Requires a running loop."""
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError as e:
            # No running loop: close the coroutine so it is not left un-awaited.
            close = getattr(coro, "close", None)
            if callable(close):
                close()
            self.report(operation, e, conversation_id)
            return None

        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self.report(operation, exc, conversation_id)

        task.add_done_callback(_done)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight fire-and-forget tasks (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
