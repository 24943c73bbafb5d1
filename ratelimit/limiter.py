"""
Rate Limiter: per-client fixed windows, one bucket space per scope.

Responsibility:
- Count requests per (scope, client key) inside a window
- Reject the (max+1)-th request of a window with a reset hint
- Evict expired buckets from a cancellable background sweeper

Buckets live in process memory: limits hold for a single instance only.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable

from pydantic import BaseModel

from shared.errors import RateLimitExceeded

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "rl:global"
AI_SCOPE = "rl:ai"


class RateScope(BaseModel):
    """Limit definition for one bucket space."""
    model_config = {"frozen": True}

    prefix: str
    window_ms: int = 60_000
    max_requests: int = 60
    message: str = "Too many requests. Please try again later."


class RateDecision(BaseModel):
    """Result of a single check."""
    model_config = {"frozen": True}

    allowed: bool
    scope: str
    limit: int
    remaining: int
    reset_seconds: int


class RateBucket:
    __slots__ = ("count", "reset_at")

    def __init__(self, reset_at: float):
        self.count = 0
        self.reset_at = reset_at


class RateLimiter:
    """In-memory limiter shared by every route of the process."""

    def __init__(
        self,
        scopes: list[RateScope],
        clock: Callable[[], float] = time.monotonic,
        sweep_interval_seconds: float = 300.0,
    ):
        self.scopes: dict[str, RateScope] = {scope.prefix: scope for scope in scopes}
        self._clock = clock
        self._buckets: dict[tuple[str, str], RateBucket] = {}
        self.sweep_interval_seconds = sweep_interval_seconds
        self._sweeper: asyncio.Task | None = None

    def check(self, scope: str, client_key: str) -> RateDecision:
        """Count one hit against (scope, client_key) and report whether it is allowed."""
        rule = self.scopes.get(scope)
        if rule is None:
            raise KeyError(f"Unknown rate limit scope: {scope}")

        now = self._clock()
        key = (rule.prefix, client_key or "unknown")
        bucket = self._buckets.get(key)
        if bucket is None or now >= bucket.reset_at:
            bucket = RateBucket(reset_at=now + rule.window_ms / 1000.0)
            self._buckets[key] = bucket

        bucket.count += 1
        # Whole seconds, never past the window itself (sub-second windows report 0).
        reset_seconds = min(max(0, math.ceil(bucket.reset_at - now)), rule.window_ms // 1000)
        return RateDecision(
            allowed=bucket.count <= rule.max_requests,
            scope=rule.prefix,
            limit=rule.max_requests,
            remaining=max(0, rule.max_requests - bucket.count),
            reset_seconds=reset_seconds,
        )

    def enforce(self, scopes: list[str], client_key: str) -> list[RateDecision]:
        """Check scopes in order; raise on the first one that rejects."""
        decisions: list[RateDecision] = []
        for scope in scopes:
            decision = self.check(scope, client_key)
            if not decision.allowed:
                logger.info(
                    "Rate limit hit: scope=%s client=%s reset=%ss",
                    scope,
                    client_key,
                    decision.reset_seconds,
                )
                raise RateLimitExceeded(
                    self.scopes[scope].message,
                    reset_seconds=decision.reset_seconds,
                    limit=decision.limit,
                )
            decisions.append(decision)
        return decisions

    def sweep(self) -> int:
        """Delete buckets whose window has already elapsed. Returns the number removed."""
        now = self._clock()
        expired = [key for key, bucket in self._buckets.items() if bucket.reset_at < now]
        for key in expired:
            del self._buckets[key]
        if expired:
            logger.debug("Rate limiter swept %d expired buckets", len(expired))
        return len(expired)

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep()

    def start(self) -> None:
        """Start the background sweeper on the running loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the background sweeper and wait for it to exit."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()
