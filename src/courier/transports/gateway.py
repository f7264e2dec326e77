"""Raw-HTTP transport for on-premise Messages API gateways.

Gateways speak a reduced dialect: one non-streaming POST per call carrying
text-only messages. Image, tool and reasoning content is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ValidationError

from courier._http import GATEWAY_TIMEOUT_S, MESSAGES_PATH, RATE_LIMIT_STATUS_CODES
from courier.errors import (
    APIError,
    AuthorizationError,
    CredentialError,
    EndpointConfigError,
    InternalFault,
    MalformedResponseError,
    RateLimitedError,
    TransportError,
    UpstreamServiceError,
)
from courier.models import FinishReason, ProviderResponse, TokenUsage
from courier.streaming import map_finish_reason
from courier.transports._errors import (
    HINT_AUTHORIZATION,
    HINT_CREDENTIAL,
    HINT_ENDPOINT,
    HINT_GENERIC,
    HINT_NETWORK,
    HINT_RATE_LIMIT,
    HINT_UPSTREAM,
    retry_after_from_headers,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from courier.request import WireRequest
    from courier.transports.base import RawEventStream

log = logging.getLogger(__name__)

_STATUS_ERRORS: dict[int, tuple[type[APIError], str, str]] = {
    401: (CredentialError, "authentication failed (401)", HINT_CREDENTIAL),
    403: (
        AuthorizationError,
        "access forbidden (403): insufficient permissions",
        HINT_AUTHORIZATION,
    ),
    404: (EndpointConfigError, "endpoint not found (404)", HINT_ENDPOINT),
    500: (
        UpstreamServiceError,
        "server error (500): on-premise service issue",
        HINT_UPSTREAM,
    ),
}


class _GatewayBlock(BaseModel):
    type: str | None = None
    text: str | None = None

    model_config = {"extra": "ignore"}


class _GatewayUsage(BaseModel):
    input_tokens: int | None = None
    output_tokens: int | None = None

    model_config = {"extra": "ignore"}


class _GatewayEnvelope(BaseModel):
    """Response body; every field may be absent."""

    content: list[_GatewayBlock] | None = None
    usage: _GatewayUsage | None = None
    stop_reason: str | None = None

    model_config = {"extra": "ignore"}


def gateway_endpoint(base_url: str) -> str:
    """Messages endpoint for *base_url*: one trailing slash trimmed, no version added."""
    base = base_url[:-1] if base_url.endswith("/") else base_url
    return base + MESSAGES_PATH


def gateway_body(request: WireRequest) -> dict[str, Any]:
    """Reduce a WireRequest to the gateway's text-only JSON body."""
    messages: list[dict[str, str]] = []
    dropped = 0
    for msg in request.messages:
        role = msg.get("role")
        content = msg.get("content")
        blocks = [{"type": "text", "text": content}] if isinstance(content, str) else content
        texts: list[str] = []
        for block in blocks or []:
            if block.get("type") == "text" and block.get("text"):
                texts.append(block["text"])
            else:
                dropped += 1
        text = "\n\n".join(texts)
        if role in ("user", "assistant") and text:
            messages.append({"role": role, "content": text})
    if dropped:
        log.debug("Gateway request dropped %d non-text content blocks", dropped)

    body: dict[str, Any] = {
        "model": request.model,
        "max_tokens": request.max_tokens,
        "stream": False,
        "messages": messages,
    }
    system = "\n\n".join(b["text"] for b in request.system if b.get("text"))
    if system:
        body["system"] = system
    return body


class GatewayTransport:
    """Non-streaming Messages transport over plain ``httpx``.

    The whole send runs behind a guarded boundary: anything unexpected
    surfaces as InternalFault instead of escaping the caller's control flow.
    """

    name = "gateway"
    supports_streaming = False

    def __init__(
        self,
        base_url: str,
        *,
        extra_headers: Mapping[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_s: float = GATEWAY_TIMEOUT_S,
    ) -> None:
        self.endpoint = gateway_endpoint(base_url)
        self._extra_headers = dict(extra_headers or {})
        self._timeout_s = timeout_s
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def send(self, request: WireRequest, *, credential: str) -> ProviderResponse:
        """POST one request to the gateway and parse the envelope."""
        if not credential:
            raise CredentialError(
                "API key is required for on-premise authentication",
                hint=HINT_CREDENTIAL,
                transport=self.name,
                phase="send",
            )
        try:
            return await self._send(request, credential)
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            log.error("Unexpected fault in gateway send: %r", e)
            raise InternalFault(
                f"unexpected fault in gateway send: {e!r}",
                payload=e,
                transport=self.name,
                phase="send",
            ) from e

    async def _send(self, request: WireRequest, credential: str) -> ProviderResponse:
        headers = {
            **self._extra_headers,
            "Content-Type": "application/json",
            "Authorization": credential,
        }
        body = gateway_body(request)
        log.info("Gateway sending request to %s (model=%s)", self.endpoint, request.model)

        try:
            response = await self._get_client().post(
                self.endpoint, json=body, headers=headers, timeout=self._timeout_s
            )
        except httpx.HTTPError as e:
            log.error("Gateway request to %s failed: %s", self.endpoint, e)
            raise TransportError(
                f"network request failed to {self.endpoint}: {e}",
                hint=HINT_NETWORK,
                transport=self.name,
                phase="send",
            ) from e

        if response.status_code != 200:
            raise self._status_error(response)

        try:
            envelope = _GatewayEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise MalformedResponseError(
                f"failed to parse gateway response: {e}",
                hint=HINT_GENERIC,
                body=response.text,
                transport=self.name,
                phase="send",
            ) from e
        return _to_response(envelope)

    def _status_error(self, response: httpx.Response) -> APIError:
        status = response.status_code
        body = response.text
        log.error("Gateway API error: status=%s body=%s", status, body)
        mapped = _STATUS_ERRORS.get(status)
        if mapped is not None:
            err_cls, message, hint = mapped
        elif status in RATE_LIMIT_STATUS_CODES:
            err_cls, message, hint = (
                RateLimitedError,
                f"HTTP error {status}: {body}",
                HINT_RATE_LIMIT,
            )
        else:
            err_cls, message, hint = APIError, f"HTTP error {status}: {body}", HINT_GENERIC
        return err_cls(
            message,
            hint=hint,
            status_code=status,
            retry_after_s=retry_after_from_headers(response.headers),
            body=body,
            transport=self.name,
            phase="send",
        )

    async def open_stream(self, request: WireRequest, *, credential: str) -> RawEventStream:
        """Gateways do not stream; callers check ``supports_streaming`` first."""
        _ = request, credential
        raise APIError(
            "Gateway transport does not support streaming",
            hint="Use send(); streaming calls on a gateway are served by one send.",
            transport=self.name,
            phase="stream",
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this transport created it."""
        client = self._client
        if client is None or not self._owns_client:
            return
        self._client = None
        await client.aclose()


def _to_response(envelope: _GatewayEnvelope) -> ProviderResponse:
    text = ""
    if envelope.content:
        text = envelope.content[0].text or ""
    usage = envelope.usage or _GatewayUsage()
    finish_reason = FinishReason.END_TURN
    if envelope.stop_reason is not None:
        mapped = map_finish_reason(envelope.stop_reason)
        if mapped is not FinishReason.UNKNOWN:
            finish_reason = mapped
    return ProviderResponse(
        content=text,
        usage=TokenUsage(
            input_tokens=usage.input_tokens or 0,
            output_tokens=usage.output_tokens or 0,
        ),
        finish_reason=finish_reason,
    )
