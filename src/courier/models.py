"""Domain models for the transport layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Union

Role = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True)
class TextContent:
    """Plain text content."""

    text: str


@dataclass(frozen=True)
class ImageContent:
    """Inline image bytes with their MIME type."""

    mime_type: str
    data: bytes


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model.

    ``input`` holds the raw JSON arguments; while streaming it may be a
    partial fragment.
    """

    id: str
    name: str = ""
    input: str = ""
    finished: bool = False


@dataclass(frozen=True)
class ToolResult:
    """The output of a tool call, sent back to the model."""

    tool_call_id: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class ReasoningContent:
    """A reasoning trace and the provider signature that authenticates it."""

    thinking: str
    signature: str = ""


ContentPart = Union[TextContent, ImageContent, ToolCall, ToolResult, ReasoningContent]


@dataclass(frozen=True)
class ConversationMessage:
    """One conversation turn with ordered content parts."""

    role: Role
    parts: tuple[ContentPart, ...] = ()

    @classmethod
    def of(cls, role: Role, text: str) -> ConversationMessage:
        """Build a single-text message."""
        return cls(role=role, parts=(TextContent(text),))

    def text(self) -> str:
        """Concatenate all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextContent))

    def images(self) -> list[ImageContent]:
        return [p for p in self.parts if isinstance(p, ImageContent)]

    def tool_calls(self) -> list[ToolCall]:
        return [p for p in self.parts if isinstance(p, ToolCall)]

    def tool_results(self) -> list[ToolResult]:
        return [p for p in self.parts if isinstance(p, ToolResult)]

    def reasoning(self) -> ReasoningContent | None:
        """Return the first reasoning part, if any."""
        for p in self.parts:
            if isinstance(p, ReasoningContent):
                return p
        return None


@dataclass(frozen=True)
class ToolDefinition:
    """A tool the model may call, described by a JSON schema."""

    name: str
    description: str = ""
    parameters: dict[str, object] = field(default_factory=dict)
    required: tuple[str, ...] = ()


@dataclass(frozen=True)
class ModelInfo:
    """Capabilities of the target model."""

    id: str
    context_window: int = 200_000
    default_max_tokens: int = 8192
    can_reason: bool = False


class FinishReason(str, Enum):
    """Why generation stopped."""

    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    TOOL_USE = "tool_use"
    STOP_SEQUENCE = "stop_sequence"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TokenUsage:
    """Token accounting for one completed call."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0


@dataclass(frozen=True)
class ProviderResponse:
    """A standardized response from one logical call."""

    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: FinishReason = FinishReason.UNKNOWN


class EventType(str, Enum):
    """Kinds of canonical streaming events."""

    CONTENT_START = "content_start"
    CONTENT_DELTA = "content_delta"
    CONTENT_STOP = "content_stop"
    TOOL_USE_START = "tool_use_start"
    TOOL_USE_DELTA = "tool_use_delta"
    TOOL_USE_STOP = "tool_use_stop"
    THINKING_DELTA = "thinking_delta"
    SIGNATURE_DELTA = "signature_delta"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.COMPLETE, EventType.ERROR})


@dataclass(frozen=True)
class ProviderEvent:
    """One canonical streaming event."""

    type: EventType
    content: str = ""
    thinking: str = ""
    signature: str = ""
    tool_call: ToolCall | None = None
    response: ProviderResponse | None = None
    error: BaseException | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS
