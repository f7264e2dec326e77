"""Small HTTP-related constants and helpers shared across Courier.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import Mapping

log = logging.getLogger(__name__)

# Status codes that signal rate limiting or provider overload.
RATE_LIMIT_STATUS_CODES: frozenset[int] = frozenset({429, 529})

# Lower-cased markers that indicate overload regardless of status code.
OVERLOAD_MARKERS: tuple[str, ...] = ("overloaded", "rate limit exceeded")

GATEWAY_PATH_SUFFIX = "/v2/api/claude"
MESSAGES_PATH = "/messages"
GATEWAY_TIMEOUT_S = 60.0

INTERLEAVED_THINKING_BETA = "interleaved-thinking-2025-05-14"

_REDACTED_HEADERS = frozenset({"authorization", "x-api-key"})


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return a copy of *headers* safe to log."""
    return {
        k: ("[REDACTED]" if k.lower() in _REDACTED_HEADERS else v)
        for k, v in headers.items()
    }


async def _log_request(request: httpx.Request) -> None:
    log.debug(
        "HTTP %s %s headers=%s",
        request.method,
        request.url,
        redact_headers(request.headers),
    )


async def _log_response(response: httpx.Response) -> None:
    log.debug(
        "HTTP %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )


def debug_http_client(
    *, timeout: float = 600.0, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    """Return an ``httpx.AsyncClient`` that logs every request and response."""
    return httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        event_hooks={"request": [_log_request], "response": [_log_response]},
    )
