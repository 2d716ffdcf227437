from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def compute_backoff_ms(attempt: int, base_ms: int = 1000, cap_ms: int = 30_000) -> int:
    # exponential backoff with jitter
    exp = min(cap_ms, base_ms * (2 ** max(0, attempt - 1)))
    jitter = random.randint(0, max(0, exp // 3))
    return exp + jitter


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how patiently a marketplace call is repeated.

    Only idempotent requests are retried. POST/PATCH go out once unless the
    caller explicitly marks the request idempotent (e.g. a token exchange).
    """
    attempts: int = 3
    delay_ms: int = 1000
    exponential: bool = False
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")

    @classmethod
    def none(cls) -> RetryPolicy:
        return cls(attempts=1, delay_ms=0)

    def is_idempotent(self, method: str, idempotent: bool | None = None) -> bool:
        if idempotent is not None:
            return idempotent
        return method.upper() in IDEMPOTENT_METHODS

    def should_retry(self, attempt: int, *, method: str, status: int | None, idempotent: bool | None = None) -> bool:
        """`status=None` means the transport failed before a response arrived."""
        if attempt >= self.attempts:
            return False
        if not self.is_idempotent(method, idempotent):
            return False
        return status is None or status in RETRYABLE_STATUSES

    def delay_for(self, attempt: int) -> float:
        if self.exponential:
            return compute_backoff_ms(attempt, base_ms=self.delay_ms) / 1000
        return self.delay_ms / 1000

    async def wait(self, attempt: int) -> None:
        delay = self.delay_for(attempt)
        if delay > 0:
            await self.sleep(delay)
