"""
Message codec: turn <-> stored string.

    user       plain text stored as-is; structured content as a JSON array
    assistant  JSON array of {type: text} / {type: tool-call} segments
    tool       JSON array of {type: tool-result} entries

decode(role, encode(turn)) reproduces the turn. Display paths use
decode(..., strict=False), which never raises on malformed rows.
"""
from __future__ import annotations

import json
import logging

from companion.turns import (
    TextPart,
    ToolResultPart,
    Turn,
    part_from_json,
    part_to_json,
)

logger = logging.getLogger(__name__)


class CodecError(ValueError):
    pass


def encode(turn: Turn) -> str:
    if turn.role == "user":
        if isinstance(turn.content, str):
            return turn.content
        if not turn.content:
            return ""
        return json.dumps(turn.content, ensure_ascii=False)

    if turn.role == "assistant":
        if isinstance(turn.content, str):
            return json.dumps([{"type": "text", "text": turn.content}], ensure_ascii=False)
        return json.dumps([part_to_json(p) for p in turn.content], ensure_ascii=False)

    if turn.role == "tool":
        return json.dumps(
            [part_to_json(p) for p in turn.content],
            ensure_ascii=False,
            default=str,
        )

    raise CodecError(f"Unknown role: {turn.role!r}")


def _looks_structured(value) -> bool:
    return (
        isinstance(value, list)
        and len(value) > 0
        and all(isinstance(p, dict) and "type" in p for p in value)
    )


def decode(role: str, stored: str, strict: bool = True) -> Turn:
    """Rebuild a turn from its stored string.

    With ``strict=False`` unreadable content degrades instead of raising:
    assistant -> one text segment with the raw string, tool -> no results.
    """
    if role == "user":
        if stored[:1] == "[":
            try:
                value = json.loads(stored)
            except ValueError:
                value = None
            if _looks_structured(value):
                return Turn("user", value)
        return Turn("user", stored)

    if role not in ("assistant", "tool"):
        if strict:
            raise CodecError(f"Unknown role: {role!r}")
        return Turn(role, stored or "")

    try:
        raw = json.loads(stored)
        if not isinstance(raw, list):
            raise CodecError(f"Expected a JSON array for {role} content")
        parts = [part_from_json(item) for item in raw]
        if role == "tool" and not all(isinstance(p, ToolResultPart) for p in parts):
            raise CodecError("Tool turns may only hold tool-result entries")
        if role == "assistant" and any(isinstance(p, ToolResultPart) for p in parts):
            raise CodecError("Assistant turns may not hold tool-result entries")
        return Turn(role, parts)
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        if strict:
            raise CodecError(f"Unreadable {role} content: {e}") from e
        logger.warning(f"[codec] degrading unreadable {role} content: {e}")
        if role == "assistant":
            return Turn("assistant", [TextPart(stored or "")] if stored else [])
        return Turn("tool", [])


def encode_row(turn: Turn, turn_id: str | None = None) -> dict:
    row = {"role": turn.role, "content": encode(turn)}
    if turn_id:
        row["id"] = turn_id
    return row


def decode_for_display(row: dict) -> dict:
    """Stored row -> JSON-ready dict with segments expanded."""
    turn = decode(row["role"], row["content"], strict=False)
    if isinstance(turn.content, list):
        content = [
            part if isinstance(part, dict) else part_to_json(part)
            for part in turn.content
        ]
    else:
        content = turn.content
    return {
        "id": row.get("id"),
        "role": turn.role,
        "content": content,
        "created_at": row.get("created_at"),
    }
