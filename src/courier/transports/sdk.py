"""Anthropic SDK transport."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from courier._http import debug_http_client
from courier.errors import ConfigurationError
from courier.models import ProviderResponse, TokenUsage, ToolCall
from courier.streaming import map_finish_reason
from courier.transports._errors import wrap_transport_error

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from courier.config import Config
    from courier.request import WireRequest

log = logging.getLogger(__name__)


class SDKTransport:
    """Messages API transport through the official ``anthropic`` SDK.

    The SDK client is built lazily and rebuilt whenever the credential
    changes, which happens after the endpoint rejects an expired one.
    Superseded clients stay open until ``aclose()``; other calls may still be
    reading from them.
    """

    name = "anthropic"
    supports_streaming = True

    def __init__(self, config: Config) -> None:
        self._config = config
        self._client: Any = None
        self._client_credential: str | None = None
        #: Superseded clients; calls started on them may still be in flight.
        self._retired: list[Any] = []

    async def _get_client(self, credential: str) -> Any:
        """Return the async SDK client for *credential*, rebuilding on change."""
        if self._client is not None and credential == self._client_credential:
            return self._client
        previous = self._client
        self._client = self._build_client(credential)
        self._client_credential = credential
        if previous is not None:
            log.debug("Rebuilt SDK client after credential change")
            self._retired.append(previous)
        return self._client

    def _build_client(self, credential: str) -> Any:
        try:
            import anthropic
        except ImportError as e:
            raise ConfigurationError(
                "anthropic package not installed",
                hint="pip install anthropic",
            ) from e

        config = self._config
        headers = dict(config.extra_headers)
        kwargs: dict[str, Any] = {}
        if config.base_url:
            kwargs["base_url"] = config.base_url
        if config.debug:
            kwargs["http_client"] = debug_http_client()

        if config.client_type == "bedrock":
            return anthropic.AsyncAnthropicBedrock(default_headers=headers, **kwargs)
        if config.client_type == "vertex":
            return anthropic.AsyncAnthropicVertex(
                region=config.extra_params["location"],
                project_id=config.extra_params["project"],
                default_headers=headers,
                **kwargs,
            )

        has_auth_header = any(k.lower() == "authorization" for k in headers)
        if has_auth_header:
            log.debug("Authorization header provided; not sending the API key")
        elif credential.startswith("Bearer "):
            log.debug("Credential is a bearer token; sending it as Authorization")
            kwargs["auth_token"] = credential.removeprefix("Bearer ")
        elif credential:
            kwargs["api_key"] = credential
        return anthropic.AsyncAnthropic(default_headers=headers, **kwargs)

    def _create_kwargs(self, request: WireRequest) -> dict[str, Any]:
        kwargs = request.to_sdk_kwargs()
        if self._config.extra_body:
            kwargs["extra_body"] = dict(self._config.extra_body)
        return kwargs

    async def send(self, request: WireRequest, *, credential: str) -> ProviderResponse:
        """Send one request and parse the complete message."""
        client = await self._get_client(credential)
        kwargs = self._create_kwargs(request)
        kwargs.pop("stream", None)
        try:
            message = await client.messages.create(**kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_transport_error(e, transport=self.name, phase="send") from e
        return parse_message(message)

    async def open_stream(
        self, request: WireRequest, *, credential: str
    ) -> _SDKEventStream:
        """Start a streaming request and return its raw event handle."""
        client = await self._get_client(credential)
        kwargs = self._create_kwargs(request)
        kwargs["stream"] = True
        try:
            stream = await client.messages.create(**kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_transport_error(e, transport=self.name, phase="stream") from e
        return _SDKEventStream(stream, transport=self.name)

    async def aclose(self) -> None:
        """Close the current client and every client it superseded."""
        clients = [*self._retired, self._client]
        self._retired = []
        self._client = None
        self._client_credential = None
        for client in clients:
            if client is not None:
                await client.close()


class _SDKEventStream:
    """Wraps an SDK ``AsyncStream`` so iteration errors use Courier's taxonomy."""

    def __init__(self, stream: Any, *, transport: str) -> None:
        self._stream = stream
        self._transport = transport

    async def __aiter__(self) -> AsyncIterator[Any]:
        try:
            async for event in self._stream:
                yield event
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_transport_error(e, transport=self._transport, phase="stream") from e

    async def close(self) -> None:
        await self._stream.close()


def parse_message(message: Any) -> ProviderResponse:
    """Parse an SDK ``Message`` into a ProviderResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    for block in getattr(message, "content", None) or []:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text_parts.append(getattr(block, "text", "") or "")
        elif block_type == "tool_use":
            raw_input = getattr(block, "input", None)
            tool_calls.append(
                ToolCall(
                    id=getattr(block, "id", ""),
                    name=getattr(block, "name", ""),
                    input=_dump_input(raw_input),
                    finished=True,
                )
            )

    usage_raw = getattr(message, "usage", None)
    usage = TokenUsage(
        input_tokens=_count(usage_raw, "input_tokens"),
        output_tokens=_count(usage_raw, "output_tokens"),
        cache_creation_tokens=_count(usage_raw, "cache_creation_input_tokens"),
        cache_read_tokens=_count(usage_raw, "cache_read_input_tokens"),
    )
    return ProviderResponse(
        content="".join(text_parts),
        tool_calls=tuple(tool_calls),
        usage=usage,
        finish_reason=map_finish_reason(getattr(message, "stop_reason", None)),
    )


def _count(usage: Any, attr: str) -> int:
    value = getattr(usage, attr, None)
    return value if isinstance(value, int) else 0


def _dump_input(raw: Any) -> str:
    if raw is None:
        return "{}"
    if isinstance(raw, str):
        return raw
    return json.dumps(raw)
