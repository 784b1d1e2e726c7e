"""
Turns: the normalized in-memory conversation representation.

A Turn is one user, assistant or tool message. Assistant content is an ordered
list of text and tool-call segments; tool content is a list of tool results,
one per resolved call. This module converts the browser/mobile message shape
into turns, strips dangling tool calls before persistence, and maps turns onto
the alternating user/assistant shape the Anthropic Messages API expects.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class TextPart:
    text: str


@dataclass
class ToolCallPart:
    tool_call_id: str
    tool_name: str
    args: dict = field(default_factory=dict)


@dataclass
class ToolResultPart:
    tool_call_id: str
    tool_name: str
    result: Any = None


@dataclass
class Turn:
    role: str
    # user: str or list of structured parts (dicts)
    # assistant: list[TextPart | ToolCallPart]
    # tool: list[ToolResultPart]
    content: Any

    def tool_calls(self) -> list[ToolCallPart]:
        if self.role != "assistant" or not isinstance(self.content, list):
            return []
        return [p for p in self.content if isinstance(p, ToolCallPart)]

    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        if not isinstance(self.content, list):
            return ""
        chunks = []
        for part in self.content:
            if isinstance(part, TextPart):
                chunks.append(part.text)
            elif isinstance(part, dict) and part.get("type") == "text":
                chunks.append(str(part.get("text", "")))
        return "".join(chunks)

    def is_empty(self) -> bool:
        """True when there is nothing to send: no non-blank text, no attachments."""
        if isinstance(self.content, str):
            return not self.content.strip()
        if not isinstance(self.content, list):
            return True
        for part in self.content:
            if isinstance(part, dict) and part.get("type") == "text":
                if str(part.get("text", "")).strip():
                    return False
            elif isinstance(part, TextPart):
                if part.text.strip():
                    return False
            else:
                return False
        return True


# ---------------------------------------------------------------------------
# Segment (de)serialization shared with the codec
# ---------------------------------------------------------------------------

def part_to_json(part) -> dict:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ToolCallPart):
        return {
            "type": "tool-call",
            "toolCallId": part.tool_call_id,
            "toolName": part.tool_name,
            "args": part.args,
        }
    if isinstance(part, ToolResultPart):
        return {
            "type": "tool-result",
            "toolCallId": part.tool_call_id,
            "toolName": part.tool_name,
            "result": part.result,
        }
    raise TypeError(f"Unsupported turn part: {type(part).__name__}")


def part_from_json(data: dict):
    kind = data.get("type")
    if kind == "text":
        return TextPart(text=str(data.get("text", "")))
    if kind == "tool-call":
        return ToolCallPart(
            tool_call_id=data["toolCallId"],
            tool_name=data["toolName"],
            args=data.get("args") or {},
        )
    if kind == "tool-result":
        return ToolResultPart(
            tool_call_id=data["toolCallId"],
            tool_name=data["toolName"],
            result=data.get("result"),
        )
    raise ValueError(f"Unknown segment type: {kind!r}")


# ---------------------------------------------------------------------------
# Client messages -> turns
# ---------------------------------------------------------------------------

def _attachment_part(attachment: dict) -> dict:
    content_type = attachment.get("contentType") or ""
    url = attachment.get("url", "")
    if content_type.startswith("image/"):
        return {"type": "image", "image": url}
    return {
        "type": "file",
        "data": url,
        "mimeType": content_type,
        "name": attachment.get("name"),
    }


def from_client_messages(messages: list[dict]) -> list[Turn]:
    """Convert UI messages ``{role, content, toolInvocations?, experimental_attachments?}``.

    An assistant message carrying tool invocations expands into an assistant
    turn (text + tool-call segments) followed by a tool turn holding the
    resolved results. Invocations without a result are dropped so the history
    never references an unresolved call.
    """
    turns: list[Turn] = []

    for message in messages:
        role = message.get("role")
        content = message.get("content")

        if role == "user":
            attachments = message.get("experimental_attachments") or []
            if attachments:
                parts = []
                if isinstance(content, str) and content:
                    parts.append({"type": "text", "text": content})
                parts.extend(_attachment_part(a) for a in attachments)
                turns.append(Turn("user", parts))
            elif isinstance(content, list) and content:
                turns.append(Turn("user", list(content)))
            else:
                # Empty structured content is stored as plain empty text
                turns.append(Turn("user", content if isinstance(content, str) else ""))

        elif role == "assistant":
            parts: list = []
            if isinstance(content, list):
                for raw in content:
                    try:
                        parts.append(part_from_json(raw))
                    except (KeyError, ValueError, AttributeError):
                        logger.debug(f"[turns] skipping unreadable assistant segment: {raw!r}")
            elif content:
                parts.append(TextPart(str(content)))

            results = []
            for invocation in message.get("toolInvocations") or []:
                if not isinstance(invocation, dict) or "result" not in invocation:
                    continue
                if not invocation.get("toolCallId") or not invocation.get("toolName"):
                    logger.info(f"[turns] skipping tool invocation without id or name: {invocation!r}")
                    continue
                parts.append(ToolCallPart(
                    tool_call_id=invocation["toolCallId"],
                    tool_name=invocation["toolName"],
                    args=invocation.get("args") if isinstance(invocation.get("args"), dict) else {},
                ))
                results.append(ToolResultPart(
                    tool_call_id=invocation["toolCallId"],
                    tool_name=invocation["toolName"],
                    result=invocation["result"],
                ))

            if parts:
                turns.append(Turn("assistant", parts))
            if results:
                turns.append(Turn("tool", results))

        # system/data/tool messages from clients are not trusted as history

    return turns


def most_recent_user_turn(turns: list[Turn]) -> Turn | None:
    for turn in reversed(turns):
        if turn.role == "user":
            return turn
    return None


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------

def sanitize_response_turns(turns: list[Turn]) -> list[Turn]:
    """Drop tool-call segments that never received a result.

    Empty text segments are dropped too, and an assistant turn left with no
    segments is removed entirely. Tool results are kept only when they answer
    a call made by an earlier assistant turn (first result per call id wins).
    """
    resolved = {
        part.tool_call_id
        for turn in turns
        if turn.role == "tool"
        for part in turn.content
    }

    sanitized: list[Turn] = []
    called: set[str] = set()

    for turn in turns:
        if turn.role == "assistant":
            content = turn.content
            if isinstance(content, str):
                content = [TextPart(content)]
            parts = []
            for part in content:
                if isinstance(part, ToolCallPart):
                    if part.tool_call_id in resolved:
                        parts.append(part)
                        called.add(part.tool_call_id)
                elif isinstance(part, TextPart):
                    if part.text:
                        parts.append(part)
            if parts:
                sanitized.append(Turn("assistant", parts))

        elif turn.role == "tool":
            seen: set[str] = set()
            results = []
            for part in turn.content:
                if part.tool_call_id in called and part.tool_call_id not in seen:
                    seen.add(part.tool_call_id)
                    results.append(part)
            if results:
                sanitized.append(Turn("tool", results))

        else:
            sanitized.append(turn)

    return sanitized


# ---------------------------------------------------------------------------
# Turns -> Anthropic messages
# ---------------------------------------------------------------------------

def _user_blocks(content) -> list[dict]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []

    blocks = []
    for part in content or []:
        if not isinstance(part, dict):
            continue
        kind = part.get("type")
        if kind == "text" and part.get("text"):
            blocks.append({"type": "text", "text": part["text"]})
        elif kind == "image" and part.get("image"):
            blocks.append({
                "type": "image",
                "source": {"type": "url", "url": part["image"]},
            })
        elif kind == "file" and part.get("data"):
            name = part.get("name") or "attachment"
            blocks.append({"type": "text", "text": f"[Attached file {name}: {part['data']}]"})
    return blocks


def _result_text(result) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


def to_anthropic_messages(turns: list[Turn]) -> list[dict]:
    """Map turns to alternating user/assistant messages.

    Tool turns become user messages made of ``tool_result`` blocks; adjacent
    messages with the same role are merged.
    """
    messages: list[dict] = []

    for turn in turns:
        if turn.role == "user":
            role, blocks = "user", _user_blocks(turn.content)
        elif turn.role == "assistant":
            role, blocks = "assistant", []
            content = turn.content if isinstance(turn.content, list) else [TextPart(str(turn.content))]
            for part in content:
                if isinstance(part, TextPart) and part.text:
                    blocks.append({"type": "text", "text": part.text})
                elif isinstance(part, ToolCallPart):
                    blocks.append({
                        "type": "tool_use",
                        "id": part.tool_call_id,
                        "name": part.tool_name,
                        "input": part.args or {},
                    })
        elif turn.role == "tool":
            role, blocks = "user", []
            for part in turn.content:
                block = {
                    "type": "tool_result",
                    "tool_use_id": part.tool_call_id,
                    "content": _result_text(part.result),
                }
                if isinstance(part.result, dict) and part.result.get("error"):
                    block["is_error"] = True
                blocks.append(block)
        else:
            continue

        if not blocks:
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(blocks)
        else:
            messages.append({"role": role, "content": blocks})

    return messages
