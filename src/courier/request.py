"""Assembly of one inference request from history and sizing state."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from courier._http import INTERLEAVED_THINKING_BETA
from courier.messages import EPHEMERAL_CACHE, convert_messages, convert_tools

if TYPE_CHECKING:
    from collections.abc import Sequence

    from courier.models import ConversationMessage, ModelInfo, ToolDefinition

#: Share of ``max_tokens`` reserved for reasoning when it is enabled.
REASONING_BUDGET_RATIO = 0.8
#: Providers reject custom temperatures under extended reasoning.
REASONING_TEMPERATURE = 1.0
DEFAULT_TEMPERATURE = 0.0


@dataclass(frozen=True)
class WireRequest:
    """A fully resolved Messages API request for one attempt."""

    model: str
    max_tokens: int
    temperature: float
    system: list[dict[str, Any]] = field(default_factory=list)
    messages: list[dict[str, Any]] = field(default_factory=list)
    tools: list[dict[str, Any]] | None = None
    stream: bool = False
    thinking: dict[str, Any] | None = None
    extra_headers: dict[str, str] = field(default_factory=dict)

    def to_sdk_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``client.messages.create``."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": self.messages,
        }
        if self.system:
            kwargs["system"] = self.system
        if self.tools:
            kwargs["tools"] = self.tools
        if self.thinking is not None:
            kwargs["thinking"] = self.thinking
        if self.extra_headers:
            kwargs["extra_headers"] = dict(self.extra_headers)
        if self.stream:
            kwargs["stream"] = True
        return kwargs


def resolve_max_tokens(
    model: ModelInfo, *, override: int | None = None, adjusted: int | None = None
) -> int:
    """Pick the output budget: overflow adjustment > caller override > default."""
    for candidate in (adjusted, override):
        if candidate is not None and candidate > 0:
            return candidate
    return model.default_max_tokens


def build_request(
    model: ModelInfo,
    messages: Sequence[ConversationMessage],
    tools: Sequence[ToolDefinition] | None = None,
    *,
    system: str | None = None,
    system_prompt_prefix: str | None = None,
    max_tokens_override: int | None = None,
    adjusted_max_tokens: int | None = None,
    reasoning: bool = False,
    disable_cache: bool = False,
    stream: bool = False,
) -> WireRequest:
    """Build the request for one attempt.

    Rebuilt on every attempt since ``adjusted_max_tokens`` may change
    between attempts of the same call.
    """
    system_texts, wire_messages = convert_messages(
        messages, disable_cache=disable_cache
    )
    max_tokens = resolve_max_tokens(
        model, override=max_tokens_override, adjusted=adjusted_max_tokens
    )

    temperature = DEFAULT_TEMPERATURE
    thinking: dict[str, Any] | None = None
    extra_headers: dict[str, str] = {}
    if reasoning and model.can_reason:
        thinking = {
            "type": "enabled",
            "budget_tokens": int(max_tokens * REASONING_BUDGET_RATIO),
        }
        temperature = REASONING_TEMPERATURE
        extra_headers["anthropic-beta"] = INTERLEAVED_THINKING_BETA

    system_blocks: list[dict[str, Any]] = []
    if system_prompt_prefix:
        system_blocks.append({"type": "text", "text": system_prompt_prefix})
    prompt = "\n\n".join(t for t in (system, *system_texts) if t)
    if prompt:
        block: dict[str, Any] = {"type": "text", "text": prompt}
        if not disable_cache:
            block["cache_control"] = dict(EPHEMERAL_CACHE)
        system_blocks.append(block)

    return WireRequest(
        model=model.id,
        max_tokens=max_tokens,
        temperature=temperature,
        system=system_blocks,
        messages=wire_messages,
        tools=convert_tools(tools, disable_cache=disable_cache),
        stream=stream,
        thinking=thinking,
        extra_headers=extra_headers,
    )
