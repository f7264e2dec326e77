"""Conversion of conversation history into Messages API content blocks."""

from __future__ import annotations

import base64
import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence

    from courier.models import ConversationMessage, ToolDefinition

log = logging.getLogger(__name__)

EPHEMERAL_CACHE: dict[str, str] = {"type": "ephemeral"}

# Messages this close to the end of the conversation are cache-marked.
_CACHE_TAIL = 2


def convert_messages(
    messages: Sequence[ConversationMessage], *, disable_cache: bool = False
) -> tuple[list[str], list[dict[str, Any]]]:
    """Convert history into ``(system_texts, wire_messages)``.

    System turns are lifted out of the message list; the provider takes them
    as a separate ``system`` field.
    """
    system_texts: list[str] = []
    wire: list[dict[str, Any]] = []
    tail_start = len(messages) - _CACHE_TAIL

    for idx, msg in enumerate(messages):
        cache = idx >= tail_start and not disable_cache

        if msg.role == "system":
            text = msg.text()
            if text:
                system_texts.append(text)

        elif msg.role == "user":
            text_block: dict[str, Any] = {"type": "text", "text": msg.text()}
            if cache:
                text_block["cache_control"] = dict(EPHEMERAL_CACHE)
            blocks = [text_block]
            for image in msg.images():
                blocks.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": image.mime_type,
                            "data": base64.b64encode(image.data).decode("ascii"),
                        },
                    }
                )
            _append_message(wire, {"role": "user", "content": blocks})

        elif msg.role == "assistant":
            blocks = _assistant_blocks(msg, cache=cache)
            if blocks:
                _append_message(wire, {"role": "assistant", "content": blocks})

        elif msg.role == "tool":
            results = [
                {
                    "type": "tool_result",
                    "tool_use_id": r.tool_call_id,
                    "content": r.content,
                    "is_error": r.is_error,
                }
                for r in msg.tool_results()
            ]
            if results:
                _append_message(wire, {"role": "user", "content": results})

    return system_texts, wire


def _assistant_blocks(msg: ConversationMessage, *, cache: bool) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []

    # Reasoning must lead the turn when replayed alongside tool use.
    reasoning = msg.reasoning()
    if reasoning is not None and reasoning.thinking:
        blocks.append(
            {
                "type": "thinking",
                "thinking": reasoning.thinking,
                "signature": reasoning.signature,
            }
        )

    text = msg.text()
    if text:
        text_block: dict[str, Any] = {"type": "text", "text": text}
        if cache:
            text_block["cache_control"] = dict(EPHEMERAL_CACHE)
        blocks.append(text_block)

    for call in msg.tool_calls():
        try:
            args = json.loads(call.input) if call.input else {}
        except json.JSONDecodeError:
            log.debug("Skipping tool call %s with unparsable input", call.id)
            continue
        if not isinstance(args, dict):
            log.debug("Skipping tool call %s with non-object input", call.id)
            continue
        blocks.append(
            {"type": "tool_use", "id": call.id, "name": call.name, "input": args}
        )
    return blocks


def convert_tools(
    tools: Sequence[ToolDefinition] | None, *, disable_cache: bool = False
) -> list[dict[str, Any]] | None:
    """Convert tool definitions; the last one is cache-marked."""
    if not tools:
        return None
    converted: list[dict[str, Any]] = []
    for i, tool in enumerate(tools):
        tool_def: dict[str, Any] = {
            "name": tool.name,
            "description": tool.description,
            "input_schema": {
                "type": "object",
                "properties": dict(tool.parameters),
                "required": list(tool.required),
            },
        }
        if i == len(tools) - 1 and not disable_cache:
            tool_def["cache_control"] = dict(EPHEMERAL_CACHE)
        converted.append(tool_def)
    return converted


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    The Messages API requires strict user/assistant alternation, so a tool
    result followed by a user prompt becomes one user message.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        messages[-1]["content"] = messages[-1]["content"] + msg["content"]
    else:
        messages.append(msg)
