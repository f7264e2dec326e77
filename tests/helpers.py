"""Test helpers (small, reusable doubles).

Builders for raw Messages API stream events, shaped like the SDK's event
objects (attribute access only), plus a fake SDK client.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any


def ev(type_: str, **fields: Any) -> SimpleNamespace:
    return SimpleNamespace(type=type_, **fields)


def message_start(input_tokens: int = 10, cache_read: int = 0) -> SimpleNamespace:
    usage = SimpleNamespace(
        input_tokens=input_tokens,
        output_tokens=1,
        cache_creation_input_tokens=0,
        cache_read_input_tokens=cache_read,
    )
    return ev("message_start", message=SimpleNamespace(usage=usage))


def text_start(index: int = 0) -> SimpleNamespace:
    return ev(
        "content_block_start",
        index=index,
        content_block=SimpleNamespace(type="text", text=""),
    )


def text_delta(text: str, index: int = 0) -> SimpleNamespace:
    return ev(
        "content_block_delta",
        index=index,
        delta=SimpleNamespace(type="text_delta", text=text),
    )


def tool_start(tool_id: str, name: str, index: int = 1) -> SimpleNamespace:
    return ev(
        "content_block_start",
        index=index,
        content_block=SimpleNamespace(type="tool_use", id=tool_id, name=name, input={}),
    )


def json_delta(partial: str, index: int = 1) -> SimpleNamespace:
    return ev(
        "content_block_delta",
        index=index,
        delta=SimpleNamespace(type="input_json_delta", partial_json=partial),
    )


def block_stop(index: int = 0) -> SimpleNamespace:
    return ev("content_block_stop", index=index)


def message_delta(
    stop_reason: str | None = "end_turn", output_tokens: int = 5
) -> SimpleNamespace:
    return ev(
        "message_delta",
        delta=SimpleNamespace(stop_reason=stop_reason),
        usage=SimpleNamespace(output_tokens=output_tokens),
    )


def message_stop() -> SimpleNamespace:
    return ev("message_stop")


def text_message(*chunks: str, stop_reason: str = "end_turn") -> list[Any]:
    """A complete single-text-block stream."""
    return [
        message_start(),
        text_start(),
        *(text_delta(c) for c in chunks),
        block_stop(),
        message_delta(stop_reason),
        message_stop(),
    ]


class SdkStatusError(Exception):
    """Looks like an SDK APIStatusError: status plus an httpx-like response."""

    def __init__(
        self, status_code: int, message: str = "", headers: dict[str, str] | None = None
    ) -> None:
        super().__init__(message or f"Error code: {status_code}")
        self.status_code = status_code
        self.response = SimpleNamespace(
            status_code=status_code, headers=dict(headers or {})
        )


class FakeMessages:
    """``client.messages`` double recording create() kwargs."""

    def __init__(self, result: Any) -> None:
        self.result = result
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


class FakeSdkClient:
    def __init__(self, result: Any = None) -> None:
        self.messages = FakeMessages(result)
        self.closed = False

    async def close(self) -> None:
        self.closed = True
