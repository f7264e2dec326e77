"""Shared transport-side error helpers.

Transports map SDK and HTTP failures into APIError subclasses that carry the
status code and ``Retry-After`` metadata, so the retry engine can decide
without knowing which transport produced the failure.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from courier._http import OVERLOAD_MARKERS, RATE_LIMIT_STATUS_CODES
from courier.errors import (
    APIError,
    AuthorizationError,
    ContextOverflowError,
    CredentialError,
    EndpointConfigError,
    InternalFault,
    RateLimitedError,
    TransportError,
    UpstreamServiceError,
    walk_exception_chain,
)
from courier.overflow import parse_context_overflow

HINT_CREDENTIAL = "Check the credential (set ANTHROPIC_API_KEY or Config.api_key)."
HINT_AUTHORIZATION = "Check that the credential is allowed to use this model."
HINT_ENDPOINT = "Check the endpoint configuration (ANTHROPIC_BASE_URL or Config.base_url)."
HINT_UPSTREAM = "The upstream service failed; retry later or contact its operator."
HINT_RATE_LIMIT = "Rate limited or overloaded; wait and retry, or lower request volume."
HINT_OVERFLOW = "Shorten the conversation or lower max_tokens to fit the context window."
HINT_NETWORK = "Check network connectivity and the endpoint URL."
HINT_GENERIC = "Inspect the status code and response body for details."


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def retry_after_from_headers(headers: Any) -> float | None:
    """Parse a ``Retry-After`` header given in seconds."""
    if headers is None:
        return None
    raw: Any = None
    try:
        raw = headers.get("Retry-After")
    except Exception:
        raw = None
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in walk_exception_chain(exc):
        value = getattr(e, "retry_after_s", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        seconds = retry_after_from_headers(getattr(response, "headers", None))
        if seconds is not None:
            return seconds
    return None


def error_for_status(
    status_code: int,
    message: str,
    *,
    body: str | None = None,
    retry_after_s: float | None = None,
    transport: str | None = None,
    phase: str | None = None,
) -> APIError:
    """Map an HTTP status (and message) onto the Courier error taxonomy."""
    text = f"{message} {body or ''}"
    lowered = text.lower()

    err_cls: type[APIError] = APIError
    hint = HINT_GENERIC
    retryable = False
    if status_code == 401:
        err_cls, hint, retryable = CredentialError, HINT_CREDENTIAL, True
    elif status_code == 403:
        err_cls, hint = AuthorizationError, HINT_AUTHORIZATION
    elif status_code == 404:
        err_cls, hint = EndpointConfigError, HINT_ENDPOINT
    elif status_code == 400 and parse_context_overflow(text) is not None:
        err_cls, hint, retryable = ContextOverflowError, HINT_OVERFLOW, True
    elif status_code in RATE_LIMIT_STATUS_CODES or any(
        m in lowered for m in OVERLOAD_MARKERS
    ):
        err_cls, hint, retryable = RateLimitedError, HINT_RATE_LIMIT, True
    elif status_code == 500:
        err_cls, hint = UpstreamServiceError, HINT_UPSTREAM

    return err_cls(
        message,
        hint=hint,
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        body=body,
        transport=transport,
        phase=phase,
    )


def wrap_transport_error(
    exc: BaseException,
    *,
    transport: str,
    phase: str,
) -> APIError:
    """Map SDK/HTTP exceptions into APIError with stable retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.transport is None:
            exc.transport = transport
        if exc.phase is None:
            exc.phase = phase
        return exc

    status_code = extract_status_code(exc)
    if status_code is not None:
        body: Any = getattr(exc, "body", None)
        return error_for_status(
            status_code,
            f"{transport} {phase} failed (status={status_code}): {exc}",
            body=body if isinstance(body, str) else None,
            retry_after_s=extract_retry_after_s(exc),
            transport=transport,
            phase=phase,
        )

    for e in walk_exception_chain(exc):
        if isinstance(e, (httpx.TimeoutException, httpx.RequestError, TimeoutError)):
            return TransportError(
                f"{transport} {phase} failed: {exc}",
                hint=HINT_NETWORK,
                transport=transport,
                phase=phase,
            )
        # anthropic.APIConnectionError wraps the httpx error but may not chain it.
        if type(e).__name__ in {"APIConnectionError", "APITimeoutError"}:
            return TransportError(
                f"{transport} {phase} failed: {exc}",
                hint=HINT_NETWORK,
                transport=transport,
                phase=phase,
            )

    return InternalFault(
        f"{transport} {phase} raised {type(exc).__name__}: {exc}",
        payload=exc,
        transport=transport,
        phase=phase,
    )
