"""Transport protocol: the capability shared by both transport modes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from courier.models import ProviderResponse
    from courier.request import WireRequest


@runtime_checkable
class RawEventStream(Protocol):
    """Provider stream handle: async iterable of raw events, closable."""

    def __aiter__(self) -> AsyncIterator[Any]:
        """Iterate raw provider events."""
        ...

    async def close(self) -> None:
        """Release the underlying connection."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Minimal transport protocol: send, open_stream, aclose."""

    name: str

    @property
    def supports_streaming(self) -> bool:
        """Whether open_stream() is available."""
        ...

    async def send(self, request: WireRequest, *, credential: str) -> ProviderResponse:
        """Perform one non-streaming attempt."""
        ...

    async def open_stream(self, request: WireRequest, *, credential: str) -> RawEventStream:
        """Start one streaming attempt."""
        ...

    async def aclose(self) -> None:
        """Close underlying client resources."""
        ...
