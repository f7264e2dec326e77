"""Retry/backoff decisions for failed attempts.

Design goals:
- Pure decision function: (attempt, error) in, RetryDecision out
- Explicit policy object so tests can run with tiny delays
- State mutation (credential refresh, budget shrink) is requested, never
  performed, here; the caller's attempt loop applies it
"""

from __future__ import annotations

from dataclasses import dataclass
import random
from typing import TYPE_CHECKING

from courier._http import OVERLOAD_MARKERS, RATE_LIMIT_STATUS_CODES
from courier.errors import APIError, walk_exception_chain
from courier.overflow import adjusted_budget
from courier.transports._errors import (
    error_for_status,
    extract_retry_after_s,
    extract_status_code,
)

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and proportional jitter."""

    #: Attempts beyond this count are never retried.
    max_retries: int = 6
    base_delay_ms: int = 2000
    #: Upper bound of the random extra delay, as a fraction of the backoff.
    jitter_ratio: float = 0.2

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_retries < 0:
            raise ValueError("RetryPolicy.max_retries must be >= 0")
        if self.base_delay_ms < 0:
            raise ValueError("RetryPolicy.base_delay_ms must be >= 0")
        if not 0 <= self.jitter_ratio <= 1:
            raise ValueError("RetryPolicy.jitter_ratio must be within [0, 1]")


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of classifying one failed attempt."""

    retry: bool
    delay_ms: int = 0
    terminal_error: BaseException | None = None
    #: New output budget to use from the next attempt on.
    adjusted_max_tokens: int | None = None
    #: Re-resolve the credential before the next attempt.
    refresh_credential: bool = False


def compute_backoff_ms(
    attempt: int, *, policy: RetryPolicy, rng: random.Random | None = None
) -> int:
    """Exponential backoff for *attempt* (1-based) plus up to ``jitter_ratio``."""
    base = policy.base_delay_ms * (2 ** max(0, attempt - 1))
    draw: Callable[[], float] = rng.random if rng is not None else random.random
    return int(base * (1 + draw() * policy.jitter_ratio))


def _message_of(exc: BaseException) -> str:
    parts: list[str] = []
    for e in walk_exception_chain(exc):
        parts.append(str(e))
        body = getattr(e, "body", None)
        if isinstance(body, str) and body:
            parts.append(body)
    return " ".join(parts)


def _is_overloaded(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in OVERLOAD_MARKERS)


def _exhausted(exc: BaseException, status_code: int, policy: RetryPolicy) -> APIError:
    """Build the terminal error for an exhausted retry budget.

    The error keeps the kind of the underlying failure so callers can still
    branch on it.
    """
    message = f"maximum retry attempts reached: {policy.max_retries} retries ({exc})"
    if isinstance(exc, APIError):
        template = exc
    else:
        template = error_for_status(status_code, str(exc))
    cls: type[APIError] = type(template)
    err = cls(
        message,
        hint=template.hint or "The endpoint kept failing; try again later.",
        retryable=False,
        status_code=status_code,
        retry_after_s=template.retry_after_s,
        body=template.body,
        transport=template.transport,
        phase=template.phase,
    )
    if hasattr(template, "payload"):
        err.payload = template.payload
    err.__cause__ = exc
    return err


def decide_retry(
    attempt: int,
    exc: BaseException,
    *,
    policy: RetryPolicy,
    rng: random.Random | None = None,
    credential_refreshed: bool = False,
) -> RetryDecision:
    """Classify a failed attempt and decide whether to try again.

    Rules, first match wins:

    1. No HTTP status anywhere on the exception chain: fail with *exc* as is.
    2. *attempt* beyond ``policy.max_retries``: fail, whatever the cause.
    3. 401: refresh the credential and retry at once, unless the previous
       attempt already did.
    4. 400 context overflow: retry at once with a reduced budget.
    5. 429/529 or an overload message: retry after exponential backoff, or
       after ``Retry-After`` when the provider sent one.
    6. Anything else: fail with *exc*.
    """
    status_code = extract_status_code(exc)
    if status_code is None:
        return RetryDecision(retry=False, terminal_error=exc)

    if attempt > policy.max_retries:
        return RetryDecision(
            retry=False, terminal_error=_exhausted(exc, status_code, policy)
        )

    if status_code == 401:
        if credential_refreshed:
            return RetryDecision(retry=False, terminal_error=exc)
        return RetryDecision(retry=True, refresh_credential=True)

    message = _message_of(exc)

    if status_code == 400:
        budget = adjusted_budget(message)
        if budget is not None:
            return RetryDecision(retry=True, adjusted_max_tokens=budget)

    if status_code in RATE_LIMIT_STATUS_CODES or _is_overloaded(message):
        delay_ms = compute_backoff_ms(attempt, policy=policy, rng=rng)
        retry_after = extract_retry_after_s(exc)
        if retry_after is not None:
            delay_ms = int(retry_after * 1000)
        return RetryDecision(retry=True, delay_ms=delay_ms)

    return RetryDecision(retry=False, terminal_error=exc)
