"""Courier: transport layer for Messages API inference endpoints.

Public API:
    - CourierClient: send() for one response, stream() for live events
    - Config: resolved endpoint, credential and retry policy
    - ConversationMessage / ToolDefinition / ModelInfo: inputs
    - ProviderResponse / ProviderEvent: outputs
"""

from __future__ import annotations

import logging

from courier.client import AttemptState, CourierClient
from courier.config import Config
from courier.errors import (
    APIError,
    AuthorizationError,
    CancellationError,
    ConfigurationError,
    ContextOverflowError,
    CourierError,
    CredentialError,
    EndpointConfigError,
    InternalFault,
    MalformedResponseError,
    RateLimitedError,
    TransportError,
    UpstreamServiceError,
)
from courier.models import (
    ConversationMessage,
    EventType,
    FinishReason,
    ImageContent,
    ModelInfo,
    ProviderEvent,
    ProviderResponse,
    ReasoningContent,
    TextContent,
    TokenUsage,
    ToolCall,
    ToolDefinition,
    ToolResult,
)
from courier.retry import RetryDecision, RetryPolicy, decide_retry
from courier.streaming import EventStream

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("courier-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("courier").addHandler(logging.NullHandler())

# Re-export for convenience
__all__ = [
    "APIError",
    "AttemptState",
    "AuthorizationError",
    "CancellationError",
    "Config",
    "ConfigurationError",
    "ContextOverflowError",
    "ConversationMessage",
    "CourierClient",
    "CourierError",
    "CredentialError",
    "EndpointConfigError",
    "EventStream",
    "EventType",
    "FinishReason",
    "ImageContent",
    "InternalFault",
    "MalformedResponseError",
    "ModelInfo",
    "ProviderEvent",
    "ProviderResponse",
    "RateLimitedError",
    "ReasoningContent",
    "RetryDecision",
    "RetryPolicy",
    "TextContent",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "TransportError",
    "UpstreamServiceError",
    "decide_retry",
]
