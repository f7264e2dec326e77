"""Exception hierarchy for Courier."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class CourierError(Exception):
    """Base exception for all Courier errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CourierError):
    """Configuration validation or resolution failed."""


class CancellationError(CourierError):
    """The caller cancelled an in-flight call."""


class APIError(CourierError):
    """A call to the inference endpoint failed.

    Transports attach the HTTP status and ``Retry-After`` metadata so the
    retry engine can decide without inspecting transport internals.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        body: str | None = None,
        transport: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.body = body
        self.transport = transport
        self.phase = phase


class CredentialError(APIError):
    """The endpoint rejected the credential (HTTP 401)."""


class AuthorizationError(APIError):
    """The credential lacks permission for the call (HTTP 403)."""


class EndpointConfigError(APIError):
    """The configured endpoint does not exist (HTTP 404)."""


class UpstreamServiceError(APIError):
    """The endpoint reported an internal failure (HTTP 500)."""


class RateLimitedError(APIError):
    """Rate limited or overloaded (HTTP 429/529). Recoverable by retry."""


class ContextOverflowError(APIError):
    """Prompt plus requested output exceeds the context window.

    Recoverable by shrinking ``max_tokens``.
    """


class TransportError(APIError):
    """The request never produced an HTTP response."""


class MalformedResponseError(APIError):
    """The endpoint answered with a body that could not be interpreted."""


class InternalFault(APIError):
    """An unexpected fault was caught at a call boundary."""

    def __init__(
        self, message: str, *, payload: Any = None, hint: str | None = None, **kwargs: Any
    ) -> None:
        super().__init__(
            message,
            hint=hint
            or "This is likely a bug in Courier; please report it with the payload.",
            **kwargs,
        )
        self.payload = payload


def walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
