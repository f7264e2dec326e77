"""CourierClient: one interface over both transports, with retries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from courier.errors import (
    CourierError,
    CredentialError,
    InternalFault,
    MalformedResponseError,
)
from courier.models import EventType, ProviderEvent
from courier.overflow import BudgetState
from courier.request import build_request
from courier.retry import decide_retry
from courier.streaming import EventStream, StreamAssembler
from courier.transports import select_transport
from courier.transports._errors import HINT_CREDENTIAL

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    import random

    from courier.config import Config
    from courier.models import (
        ConversationMessage,
        ModelInfo,
        ProviderResponse,
        ToolDefinition,
    )
    from courier.request import WireRequest
    from courier.streaming import Emit
    from courier.transports import Transport

log = logging.getLogger(__name__)


@dataclass
class AttemptState:
    """Per-call state that lives across the call's attempts."""

    attempts: int = 0
    #: Set by a context overflow; sticks for the rest of the call.
    adjusted_max_tokens: int | None = None
    #: The previous attempt ended in a credential refresh.
    credential_refreshed: bool = False
    assembler: StreamAssembler | None = None


class CourierClient:
    """Send requests to a Messages API endpoint, with retries.

    The transport is chosen once, here, from ``config.base_url`` and never
    re-evaluated. Attempts of one call run strictly one after another.

    Example:
        client = CourierClient(Config(), ModelInfo(id="claude-sonnet-4-5"))
        response = await client.send([ConversationMessage.of("user", "Hi")])
    """

    def __init__(
        self,
        config: Config,
        model: ModelInfo,
        *,
        transport: Transport | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the client and select its transport.

        Args:
            config: Resolved configuration.
            model: Capabilities of the target model.
            transport: Explicit transport, bypassing selection (tests).
            rng: Random source for backoff jitter.
        """
        self._config = config
        self._model = model
        self._transport: Transport = (
            transport if transport is not None else select_transport(config)
        )
        self._rng = rng
        self._credential = config.api_key or ""
        self._credential_lock = asyncio.Lock()
        self._budget = BudgetState()

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def model(self) -> ModelInfo:
        return self._model

    @property
    def adjusted_max_tokens(self) -> int | None:
        """Budget carried over from the last context overflow, if any."""
        return self._budget.adjusted

    async def reset_budget(self) -> None:
        """Forget any carried-over budget adjustment."""
        await self._budget.reset()

    async def send(
        self,
        messages: Sequence[ConversationMessage],
        *,
        tools: Sequence[ToolDefinition] | None = None,
        system: str | None = None,
    ) -> ProviderResponse:
        """Run one logical call and return the complete response.

        Raises:
            CourierError: The terminal error once retries are exhausted or
                the failure is not retryable.
        """
        state = await self._new_state()
        while True:
            state.attempts += 1
            try:
                return await self._guarded(
                    lambda: self._send_attempt(state, messages, tools, system)
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await self._after_failure(state, exc)

    def stream(
        self,
        messages: Sequence[ConversationMessage],
        *,
        tools: Sequence[ToolDefinition] | None = None,
        system: str | None = None,
    ) -> EventStream:
        """Run one logical call as a stream of events.

        The stream ends with exactly one COMPLETE or ERROR event.
        """
        history = list(messages)

        async def produce(emit: Emit) -> None:
            await self._produce_stream(emit, history, tools, system)

        return EventStream(produce)

    async def aclose(self) -> None:
        """Close transport resources."""
        await self._transport.aclose()

    async def __aenter__(self) -> CourierClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # --- attempt loop internals ---

    async def _new_state(self) -> AttemptState:
        return AttemptState(adjusted_max_tokens=await self._budget.snapshot())

    async def _current_credential(self) -> str:
        async with self._credential_lock:
            return self._credential

    def _build(
        self,
        state: AttemptState,
        messages: Sequence[ConversationMessage],
        tools: Sequence[ToolDefinition] | None,
        system: str | None,
        *,
        stream: bool,
    ) -> WireRequest:
        config = self._config
        return build_request(
            self._model,
            messages,
            tools,
            system=system,
            system_prompt_prefix=config.system_prompt_prefix,
            max_tokens_override=config.max_tokens,
            adjusted_max_tokens=state.adjusted_max_tokens,
            reasoning=config.reasoning,
            disable_cache=config.disable_cache,
            stream=stream,
        )

    async def _guarded(self, attempt: Callable[[], Awaitable[Any]]) -> Any:
        """Run one attempt; uncontrolled faults become InternalFault."""
        try:
            return await attempt()
        except asyncio.CancelledError:
            raise
        except CourierError:
            raise
        except Exception as e:
            log.error("Unexpected fault during attempt: %r", e)
            raise InternalFault(
                f"unexpected fault during attempt: {e!r}",
                payload=e,
                transport=self._transport.name,
            ) from e

    async def _send_attempt(
        self,
        state: AttemptState,
        messages: Sequence[ConversationMessage],
        tools: Sequence[ToolDefinition] | None,
        system: str | None,
    ) -> ProviderResponse:
        request = self._build(state, messages, tools, system, stream=False)
        credential = await self._current_credential()
        return await self._transport.send(request, credential=credential)

    async def _after_failure(self, state: AttemptState, exc: BaseException) -> None:
        """Apply the retry decision for *exc*, or raise the terminal error."""
        decision = decide_retry(
            state.attempts,
            exc,
            policy=self._config.retry,
            rng=self._rng,
            credential_refreshed=state.credential_refreshed,
        )
        if not decision.retry:
            terminal = decision.terminal_error or exc
            if terminal is not exc:
                log.warning("Giving up after %d attempts: %s", state.attempts, exc)
            raise terminal

        state.credential_refreshed = False
        if decision.refresh_credential:
            log.warning("Credential rejected; re-resolving (attempt %d)", state.attempts)
            await self._refresh_credential()
            state.credential_refreshed = True
        if decision.adjusted_max_tokens is not None:
            state.adjusted_max_tokens = decision.adjusted_max_tokens
            await self._budget.publish(decision.adjusted_max_tokens)
        if decision.delay_ms > 0:
            log.warning(
                "Retrying after %d ms (attempt %d of %d): %s",
                decision.delay_ms,
                state.attempts,
                self._config.retry.max_retries,
                exc,
            )
            await asyncio.sleep(decision.delay_ms / 1000)

    async def _refresh_credential(self) -> None:
        try:
            credential = self._config.resolve_credential()
        except Exception as e:
            raise CredentialError(
                f"failed to resolve API key: {e}", hint=HINT_CREDENTIAL
            ) from e
        async with self._credential_lock:
            self._credential = credential

    async def _produce_stream(
        self,
        emit: Emit,
        messages: Sequence[ConversationMessage],
        tools: Sequence[ToolDefinition] | None,
        system: str | None,
    ) -> None:
        if not self._transport.supports_streaming:
            response = await self.send(messages, tools=tools, system=system)
            emit(ProviderEvent(EventType.CONTENT_START))
            if response.content:
                emit(ProviderEvent(EventType.CONTENT_DELTA, content=response.content))
            emit(ProviderEvent(EventType.CONTENT_STOP))
            emit(ProviderEvent(EventType.COMPLETE, response=response))
            return

        state = await self._new_state()
        while True:
            state.attempts += 1
            # A retried stream starts over; partial output is never spliced.
            state.assembler = StreamAssembler()
            try:
                await self._guarded(
                    lambda: self._stream_attempt(state, emit, messages, tools, system)
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await self._after_failure(state, exc)
                continue
            if state.assembler.completed:
                return
            raise MalformedResponseError(
                "stream ended before message_stop",
                hint="The connection closed early; retry the call.",
                transport=self._transport.name,
                phase="stream",
            )

    async def _stream_attempt(
        self,
        state: AttemptState,
        emit: Emit,
        messages: Sequence[ConversationMessage],
        tools: Sequence[ToolDefinition] | None,
        system: str | None,
    ) -> None:
        assembler = state.assembler
        if assembler is None:
            raise InternalFault("stream attempt started without an assembler")
        request = self._build(state, messages, tools, system, stream=True)
        credential = await self._current_credential()
        raw = await self._transport.open_stream(request, credential=credential)
        try:
            async for event in raw:
                for out in assembler.feed(event):
                    emit(out)
                if assembler.completed:
                    break
        finally:
            await raw.close()
