"""Context-overflow detection and adaptive ``max_tokens`` sizing.

When the prompt plus the requested output exceeds the model's context window
the provider answers HTTP 400 with a message such as::

    input length and `max_tokens` exceed context limit: 154978 + 50000 > 200000

The numbers are enough to compute a budget that fits on the next attempt.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import re

log = logging.getLogger(__name__)

SAFETY_BUFFER_TOKENS = 1000
MIN_MAX_TOKENS = 1000

_CONTEXT_LIMIT_RE = re.compile(
    r"input length and `?max_tokens`? exceed context limit: (\d+) \+ (\d+) > (\d+)"
)


@dataclass(frozen=True)
class ContextOverflow:
    """Token counts reported by a context-overflow error."""

    input_tokens: int
    requested_tokens: int
    context_limit: int

    def safe_max_tokens(
        self, *, buffer: int = SAFETY_BUFFER_TOKENS, floor: int = MIN_MAX_TOKENS
    ) -> int:
        """Largest output budget that fits, minus *buffer*, never below *floor*."""
        return max(self.context_limit - self.input_tokens - buffer, floor)


def parse_context_overflow(message: str) -> ContextOverflow | None:
    """Parse an overflow error message, or return None if it is not one."""
    m = _CONTEXT_LIMIT_RE.search(message)
    if m is None:
        return None
    input_tokens, requested, limit = (int(g) for g in m.groups())
    return ContextOverflow(
        input_tokens=input_tokens, requested_tokens=requested, context_limit=limit
    )


def adjusted_budget(message: str) -> int | None:
    """Return the reduced ``max_tokens`` for an overflow *message*, if any."""
    overflow = parse_context_overflow(message)
    return overflow.safe_max_tokens() if overflow is not None else None


class BudgetState:
    """Client-level adjusted budget, carried over between calls as a hint.

    Writes happen only inside a call's attempt loop; the lock serializes calls
    that share one client.
    """

    def __init__(self) -> None:
        self._adjusted: int | None = None
        self._lock = asyncio.Lock()

    @property
    def adjusted(self) -> int | None:
        return self._adjusted

    async def snapshot(self) -> int | None:
        async with self._lock:
            return self._adjusted

    async def publish(self, value: int) -> None:
        if value <= 0:
            raise ValueError("adjusted budget must be > 0")
        async with self._lock:
            previous, self._adjusted = self._adjusted, value
        log.debug("Adjusted max_tokens %s -> %s", previous, value)

    async def reset(self) -> None:
        async with self._lock:
            self._adjusted = None
