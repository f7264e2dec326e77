"""CourierClient behavior: the attempt loop, budget carry-over and streaming.

Transports are scripted doubles; retry delays are zero unless a test needs a
pending backoff.
"""

from __future__ import annotations

import asyncio

import pytest

from courier.client import CourierClient
from courier.errors import (
    AuthorizationError,
    CancellationError,
    ContextOverflowError,
    CredentialError,
    InternalFault,
    MalformedResponseError,
    RateLimitedError,
    TransportError,
)
from courier.models import EventType, FinishReason, ProviderResponse
from courier.retry import RetryPolicy
from courier.transports import GatewayTransport
from tests.conftest import (
    OVERFLOW_MESSAGE,
    TEST_MODEL,
    FakeRawStream,
    ScriptedTransport,
    make_config,
    user,
)
from tests.helpers import message_start, text_delta, text_message, text_start

pytestmark = pytest.mark.unit


def _client(transport: ScriptedTransport, **config: object) -> CourierClient:
    return CourierClient(make_config(**config), TEST_MODEL, transport=transport)


def _rate_limited() -> RateLimitedError:
    return RateLimitedError("rate limited", status_code=429)


def _overflow() -> ContextOverflowError:
    return ContextOverflowError(OVERFLOW_MESSAGE, status_code=400)


# =============================================================================
# send()
# =============================================================================


@pytest.mark.asyncio
async def test_send_returns_first_success() -> None:
    transport = ScriptedTransport(sends=[ProviderResponse(content="hello")])
    client = _client(transport)

    response = await client.send([user("hi")], system="be brief")

    assert response.content == "hello"
    assert len(transport.requests) == 1
    assert transport.requests[0].system[0]["text"] == "be brief"
    assert transport.credentials == ["sk-test"]


@pytest.mark.asyncio
async def test_rate_limit_is_retried_until_success() -> None:
    transport = ScriptedTransport(
        sends=[_rate_limited(), _rate_limited(), ProviderResponse(content="ok")]
    )

    response = await _client(transport).send([user("hi")])

    assert response.content == "ok"
    assert len(transport.requests) == 3


@pytest.mark.asyncio
async def test_retries_stop_at_the_ceiling() -> None:
    transport = ScriptedTransport(sends=[_rate_limited() for _ in range(5)])
    client = _client(transport, retry=RetryPolicy(max_retries=2, base_delay_ms=0))

    with pytest.raises(RateLimitedError, match="maximum retry attempts reached"):
        await client.send([user("hi")])

    assert len(transport.requests) == 3


@pytest.mark.asyncio
async def test_unretryable_error_is_raised_after_one_attempt() -> None:
    err = AuthorizationError("forbidden", status_code=403)
    transport = ScriptedTransport(sends=[err])

    with pytest.raises(AuthorizationError) as exc_info:
        await _client(transport).send([user("hi")])

    assert exc_info.value is err
    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_failure_without_status_is_not_retried() -> None:
    transport = ScriptedTransport(sends=[TransportError("connection reset")])

    with pytest.raises(TransportError):
        await _client(transport).send([user("hi")])

    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_uncontrolled_fault_surfaces_as_internal_fault() -> None:
    transport = ScriptedTransport(sends=[ZeroDivisionError("division by zero")])

    with pytest.raises(InternalFault) as exc_info:
        await _client(transport).send([user("hi")])

    assert isinstance(exc_info.value.payload, ZeroDivisionError)
    assert exc_info.value.transport == "scripted"


@pytest.mark.asyncio
async def test_overflow_shrinks_budget_for_this_and_later_calls() -> None:
    transport = ScriptedTransport(sends=[_overflow(), ProviderResponse(), ProviderResponse()])
    client = _client(transport)

    await client.send([user("long")])
    await client.send([user("again")])

    assert [r.max_tokens for r in transport.requests] == [50_000, 44022, 44022]
    assert client.adjusted_max_tokens == 44022


@pytest.mark.asyncio
async def test_reset_budget_restores_default_sizing() -> None:
    transport = ScriptedTransport(sends=[_overflow(), ProviderResponse(), ProviderResponse()])
    client = _client(transport)

    await client.send([user("long")])
    await client.reset_budget()
    await client.send([user("short")])

    assert transport.requests[-1].max_tokens == 50_000
    assert client.adjusted_max_tokens is None


@pytest.mark.asyncio
async def test_401_re_resolves_credential_once() -> None:
    transport = ScriptedTransport(
        sends=[CredentialError("expired", status_code=401), ProviderResponse(content="ok")]
    )
    client = _client(transport, credential_resolver=lambda: "sk-rotated")

    response = await client.send([user("hi")])

    assert response.content == "ok"
    assert transport.credentials == ["sk-test", "sk-rotated"]


@pytest.mark.asyncio
async def test_repeated_401_after_refresh_is_terminal() -> None:
    transport = ScriptedTransport(
        sends=[
            CredentialError("expired", status_code=401),
            CredentialError("still expired", status_code=401),
        ]
    )
    client = _client(transport, credential_resolver=lambda: "sk-rotated")

    with pytest.raises(CredentialError, match="still expired"):
        await client.send([user("hi")])

    assert len(transport.requests) == 2


@pytest.mark.asyncio
async def test_failed_credential_resolution_is_terminal() -> None:
    def resolver() -> str:
        raise RuntimeError("vault unavailable")

    transport = ScriptedTransport(sends=[CredentialError("expired", status_code=401)])
    client = _client(transport, credential_resolver=resolver)

    with pytest.raises(CredentialError, match="failed to resolve API key"):
        await client.send([user("hi")])


@pytest.mark.asyncio
async def test_client_context_closes_transport() -> None:
    transport = ScriptedTransport()

    async with _client(transport) as client:
        await client.send([user("hi")])

    assert transport.closed is True


# =============================================================================
# stream()
# =============================================================================


@pytest.mark.asyncio
async def test_stream_emits_assembled_events() -> None:
    raw = FakeRawStream(text_message("a", "b"))
    transport = ScriptedTransport(streams=[raw])

    events = [e async for e in _client(transport).stream([user("hi")])]

    assert [e.type for e in events] == [
        EventType.CONTENT_START,
        EventType.CONTENT_DELTA,
        EventType.CONTENT_DELTA,
        EventType.CONTENT_STOP,
        EventType.COMPLETE,
    ]
    assert events[-1].response is not None
    assert events[-1].response.content == "ab"
    assert transport.requests[0].stream is True
    assert raw.closed is True


@pytest.mark.asyncio
async def test_stream_retry_restarts_from_scratch() -> None:
    first = FakeRawStream([message_start(), text_start(), text_delta("par"), _rate_limited()])
    second = FakeRawStream(text_message("ab"))
    transport = ScriptedTransport(streams=[first, second])

    events = [e async for e in _client(transport).stream([user("hi")])]

    assert [e.content for e in events if e.type is EventType.CONTENT_DELTA] == [
        "par",
        "ab",
    ]
    complete = events[-1]
    assert complete.type is EventType.COMPLETE
    assert complete.response is not None
    assert complete.response.content == "ab"
    assert first.closed is True


@pytest.mark.asyncio
async def test_stream_overflow_adjusts_next_attempt() -> None:
    transport = ScriptedTransport(streams=[_overflow(), FakeRawStream(text_message("ok"))])
    client = _client(transport)

    response = await client.stream([user("hi")]).response()

    assert response.content == "ok"
    assert [r.max_tokens for r in transport.requests] == [50_000, 44022]


@pytest.mark.asyncio
async def test_stream_terminal_error_is_one_error_event() -> None:
    err = AuthorizationError("forbidden", status_code=403)
    transport = ScriptedTransport(streams=[err])

    events = [e async for e in _client(transport).stream([user("hi")])]

    assert [e.type for e in events] == [EventType.ERROR]
    assert events[0].error is err


@pytest.mark.asyncio
async def test_stream_ending_early_is_malformed_response() -> None:
    transport = ScriptedTransport(
        streams=[FakeRawStream([message_start(), text_start(), text_delta("a")])]
    )

    events = [e async for e in _client(transport).stream([user("hi")])]

    assert events[-1].type is EventType.ERROR
    assert isinstance(events[-1].error, MalformedResponseError)
    assert sum(e.is_terminal for e in events) == 1


@pytest.mark.asyncio
async def test_non_streaming_transport_serves_stream_from_one_send() -> None:
    transport = ScriptedTransport(
        supports_streaming=False,
        sends=[ProviderResponse(content="hi", finish_reason=FinishReason.END_TURN)],
    )

    events = [e async for e in _client(transport).stream([user("hi")])]

    assert [e.type for e in events] == [
        EventType.CONTENT_START,
        EventType.CONTENT_DELTA,
        EventType.CONTENT_STOP,
        EventType.COMPLETE,
    ]
    assert transport.requests[0].stream is False


@pytest.mark.asyncio
async def test_cancel_mid_stream_closes_raw_stream() -> None:
    raw = FakeRawStream([message_start(), text_start(), text_delta("a")], hang=True)
    transport = ScriptedTransport(streams=[raw])
    stream = _client(transport).stream([user("hi")])

    seen = [await stream.__anext__(), await stream.__anext__()]
    stream.cancel("user pressed ctrl-c")
    rest = [e async for e in stream]

    assert [e.type for e in seen] == [EventType.CONTENT_START, EventType.CONTENT_DELTA]
    assert [e.type for e in rest] == [EventType.ERROR]
    assert isinstance(rest[0].error, CancellationError)
    assert raw.closed is True


@pytest.mark.asyncio
async def test_cancel_during_backoff_stops_retrying() -> None:
    transport = ScriptedTransport(streams=[_rate_limited(), FakeRawStream(text_message("x"))])
    client = _client(transport, retry=RetryPolicy(base_delay_ms=60_000))

    async with client.stream([user("hi")]) as stream:
        await asyncio.sleep(0.01)
        stream.cancel("user pressed ctrl-c")
        events = [e async for e in stream]

    assert [e.type for e in events] == [EventType.ERROR]
    assert str(events[0].error) == "user pressed ctrl-c"
    assert len(transport.requests) == 1


def test_gateway_base_url_selects_gateway_transport() -> None:
    client = CourierClient(
        make_config(base_url="https://host/v2/api/claude"), TEST_MODEL
    )

    assert isinstance(client.transport, GatewayTransport)
    assert client.model is TEST_MODEL


@pytest.mark.asyncio
async def test_cancelled_consumer_releases_provider_stream() -> None:
    raw = FakeRawStream([message_start(), text_start(), text_delta("a")], hang=True)
    transport = ScriptedTransport(streams=[raw])
    stream = _client(transport).stream([user("hi")])

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(stream.response(), 0.05)

    assert raw.closed is True
    rest = [e async for e in stream]
    assert [e.type for e in rest] == [EventType.ERROR]
    assert isinstance(rest[0].error, CancellationError)
    assert len(transport.requests) == 1
