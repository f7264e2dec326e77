"""Streaming event assembly and the ordered event channel.

``StreamAssembler`` turns raw Messages API stream events into canonical
``ProviderEvent`` values while accumulating the final message.
``EventStream`` delivers those events from one producer task to one consumer,
guaranteeing exactly one terminal event (COMPLETE or ERROR) before it closes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

from courier.errors import CancellationError, CourierError, InternalFault
from courier.models import (
    EventType,
    FinishReason,
    ProviderEvent,
    ProviderResponse,
    TokenUsage,
    ToolCall,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    Emit = Callable[[ProviderEvent], None]

log = logging.getLogger(__name__)

_FINISH_REASONS: dict[str, FinishReason] = {
    "end_turn": FinishReason.END_TURN,
    "max_tokens": FinishReason.MAX_TOKENS,
    "tool_use": FinishReason.TOOL_USE,
    "stop_sequence": FinishReason.STOP_SEQUENCE,
}


def map_finish_reason(stop_reason: Any) -> FinishReason:
    """Map a provider stop reason onto the closed FinishReason set."""
    if stop_reason is None:
        return FinishReason.UNKNOWN
    return _FINISH_REASONS.get(str(stop_reason).lower(), FinishReason.UNKNOWN)


def _int(value: Any) -> int | None:
    return value if isinstance(value, int) else None


@dataclass
class _Block:
    kind: str
    text: list[str] = field(default_factory=list)
    tool_id: str = ""
    tool_name: str = ""
    tool_input: list[str] = field(default_factory=list)


class StreamAssembler:
    """State machine over one attempt's raw stream events.

    Text, tool and reasoning blocks are tracked by their stream index, so the
    channels evolve independently. ``message_stop`` closes the assembly with
    exactly one COMPLETE event; later events are ignored.
    """

    def __init__(self) -> None:
        self._blocks: dict[int, _Block] = {}
        self._stop_reason: Any = None
        self._usage: dict[str, int] = {}
        self.completed = False

    def feed(self, event: Any) -> list[ProviderEvent]:
        """Consume one raw event and return the canonical events it produces."""
        if self.completed:
            return []
        etype = getattr(event, "type", None)
        if etype == "message_start":
            self._merge_usage(getattr(getattr(event, "message", None), "usage", None))
            return []
        if etype == "content_block_start":
            return self._on_block_start(event)
        if etype == "content_block_delta":
            return self._on_block_delta(event)
        if etype == "content_block_stop":
            return self._on_block_stop(event)
        if etype == "message_delta":
            delta = getattr(event, "delta", None)
            stop_reason = getattr(delta, "stop_reason", None)
            if stop_reason is not None:
                self._stop_reason = stop_reason
            self._merge_usage(getattr(event, "usage", None))
            return []
        if etype == "message_stop":
            self.completed = True
            return [ProviderEvent(EventType.COMPLETE, response=self.response())]
        # ping and unknown event types carry nothing for the caller.
        return []

    def _on_block_start(self, event: Any) -> list[ProviderEvent]:
        index = getattr(event, "index", 0)
        block = getattr(event, "content_block", None)
        kind = getattr(block, "type", "")
        state = _Block(kind=kind)
        self._blocks[index] = state
        if kind == "text":
            initial = getattr(block, "text", "")
            if isinstance(initial, str) and initial:
                state.text.append(initial)
            return [ProviderEvent(EventType.CONTENT_START)]
        if kind == "tool_use":
            state.tool_id = getattr(block, "id", "") or ""
            state.tool_name = getattr(block, "name", "") or ""
            return [
                ProviderEvent(
                    EventType.TOOL_USE_START,
                    tool_call=ToolCall(id=state.tool_id, name=state.tool_name),
                )
            ]
        return []

    def _on_block_delta(self, event: Any) -> list[ProviderEvent]:
        index = getattr(event, "index", 0)
        delta = getattr(event, "delta", None)
        dtype = getattr(delta, "type", None)

        if dtype == "text_delta":
            text = getattr(delta, "text", "") or ""
            if not text:
                return []
            self._blocks.setdefault(index, _Block(kind="text")).text.append(text)
            return [ProviderEvent(EventType.CONTENT_DELTA, content=text)]
        if dtype == "input_json_delta":
            state = self._blocks.get(index)
            partial = getattr(delta, "partial_json", "") or ""
            if state is None or state.kind != "tool_use":
                return []
            state.tool_input.append(partial)
            return [
                ProviderEvent(
                    EventType.TOOL_USE_DELTA,
                    tool_call=ToolCall(id=state.tool_id, input=partial),
                )
            ]
        if dtype == "thinking_delta":
            thinking = getattr(delta, "thinking", "") or ""
            if not thinking:
                return []
            return [ProviderEvent(EventType.THINKING_DELTA, thinking=thinking)]
        if dtype == "signature_delta":
            signature = getattr(delta, "signature", "") or ""
            if not signature:
                return []
            return [ProviderEvent(EventType.SIGNATURE_DELTA, signature=signature)]
        return []

    def _on_block_stop(self, event: Any) -> list[ProviderEvent]:
        state = self._blocks.get(getattr(event, "index", 0))
        if state is None:
            return []
        if state.kind == "tool_use":
            return [
                ProviderEvent(
                    EventType.TOOL_USE_STOP, tool_call=ToolCall(id=state.tool_id)
                )
            ]
        if state.kind == "text":
            return [ProviderEvent(EventType.CONTENT_STOP)]
        return []

    def _merge_usage(self, usage: Any) -> None:
        if usage is None:
            return
        for attr in (
            "input_tokens",
            "output_tokens",
            "cache_creation_input_tokens",
            "cache_read_input_tokens",
        ):
            value = _int(getattr(usage, attr, None))
            if value is not None:
                self._usage[attr] = value

    def response(self) -> ProviderResponse:
        """Build the response accumulated so far."""
        ordered = [self._blocks[i] for i in sorted(self._blocks)]
        content = "".join("".join(b.text) for b in ordered if b.kind == "text")
        tool_calls = tuple(
            ToolCall(
                id=b.tool_id,
                name=b.tool_name,
                input="".join(b.tool_input) or "{}",
                finished=True,
            )
            for b in ordered
            if b.kind == "tool_use"
        )
        return ProviderResponse(
            content=content,
            tool_calls=tool_calls,
            usage=TokenUsage(
                input_tokens=self._usage.get("input_tokens", 0),
                output_tokens=self._usage.get("output_tokens", 0),
                cache_creation_tokens=self._usage.get("cache_creation_input_tokens", 0),
                cache_read_tokens=self._usage.get("cache_read_input_tokens", 0),
            ),
            finish_reason=map_finish_reason(self._stop_reason),
        )


_CLOSED = object()


class EventStream:
    """Ordered single-producer/single-consumer channel of ProviderEvents.

    The producer runs as one task, started on first use. Iterate with
    ``async for``; leaving an ``async with`` block early cancels the
    producer. Exactly one terminal event is delivered before the iterator
    stops.
    """

    def __init__(self, produce: Callable[[Emit], Awaitable[None]]) -> None:
        self._produce = produce
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._terminal_sent = False
        self._closed = False
        self._exhausted = False

    @property
    def terminal_sent(self) -> bool:
        return self._terminal_sent

    def _emit(self, event: ProviderEvent) -> None:
        if self._terminal_sent:
            log.debug("Dropping %s event emitted after the terminal event", event.type)
            return
        if event.is_terminal:
            self._terminal_sent = True
        self._queue.put_nowait(event)

    def _close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def _ensure_started(self) -> None:
        if self._task is None and not self._closed:
            self._task = asyncio.get_running_loop().create_task(self._run())
            # A task cancelled before its first step never reaches _run's finally.
            self._task.add_done_callback(lambda _: self._close())

    async def _run(self) -> None:
        try:
            await self._produce(self._emit)
            if not self._terminal_sent:
                self._emit(
                    ProviderEvent(
                        EventType.ERROR,
                        error=InternalFault("stream producer ended without a result"),
                    )
                )
        except asyncio.CancelledError:
            # cancel() has normally emitted the error already.
            self._emit(
                ProviderEvent(EventType.ERROR, error=_cancellation("stream cancelled"))
            )
            raise
        except Exception as exc:
            error = (
                exc
                if isinstance(exc, CourierError)
                else InternalFault(
                    f"stream producer raised {type(exc).__name__}: {exc}", payload=exc
                )
            )
            log.error("Stream failed: %s", error)
            self._emit(ProviderEvent(EventType.ERROR, error=error))
        finally:
            self._close()

    def cancel(self, reason: str = "stream cancelled by caller") -> None:
        """Cancel the stream: emit one ERROR now and stop the producer."""
        self._emit(ProviderEvent(EventType.ERROR, error=_cancellation(reason)))
        if self._task is None:
            self._close()
        elif not self._task.done():
            self._task.cancel(reason)

    async def aclose(self, reason: str = "stream cancelled by caller") -> None:
        """Cancel if still running and wait for the producer to release resources."""
        task = self._task
        if task is None:
            if not self._closed:
                self.cancel(reason)
            return
        if not task.done():
            self.cancel(reason)
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def response(self) -> ProviderResponse:
        """Drain the stream and return the final response, raising on ERROR."""
        async for event in self:
            if event.type is EventType.COMPLETE and event.response is not None:
                return event.response
            if event.type is EventType.ERROR and event.error is not None:
                raise event.error
        raise InternalFault("stream closed without a terminal event")

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> ProviderEvent:
        if self._exhausted:
            raise StopAsyncIteration
        self._ensure_started()
        try:
            item = await self._queue.get()
        except asyncio.CancelledError:
            # The consumer was cancelled; the producer must not outlive it.
            await self.aclose("stream consumer cancelled")
            raise
        if item is _CLOSED:
            self._exhausted = True
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> EventStream:
        self._ensure_started()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def _cancellation(reason: str) -> CancellationError:
    return CancellationError(
        reason, hint="The caller cancelled the call; start a new one to retry."
    )
