"""
LLM service: thin async wrapper over the Anthropic Messages API.

Three capabilities are exposed:

    stream_step           one model call with tool declarations; yields text
                          deltas, then the tool calls the model requested
    stream_text           single-prompt text generation (document bodies)
    generate_suggestions  schema-constrained list of writing suggestions

The controller drives the multi-step tool loop itself, so each
``stream_step`` is exactly one round-trip. Tests swap the service out with
``set_llm``.
"""
from __future__ import annotations

import json
import logging

import anthropic

import companion.database as database
from companion.config import ANTHROPIC_API_KEY, MAX_TOKENS
from companion.turns import ToolCallPart

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5

SUGGESTION_TOOL = {
    "name": "emit_suggestions",
    "description": "Return writing suggestions for the document.",
    "input_schema": {
        "type": "object",
        "properties": {
            "suggestions": {
                "type": "array",
                "maxItems": MAX_SUGGESTIONS,
                "items": {
                    "type": "object",
                    "properties": {
                        "originalSentence": {"type": "string", "description": "The original sentence"},
                        "suggestedSentence": {"type": "string", "description": "The suggested sentence"},
                        "description": {"type": "string", "description": "The description of the suggestion"},
                    },
                    "required": ["originalSentence", "suggestedSentence", "description"],
                },
            },
        },
        "required": ["suggestions"],
    },
}


class SuggestionScanner:
    """Pulls completed suggestion objects out of streamed tool-input JSON.

    The tool input has the shape ``{"suggestions": [{...}, {...}]}``; an
    element is complete when its closing brace brings the nesting depth back
    to the array level.
    """

    ITEM_DEPTH = 3

    def __init__(self):
        self._buffer = ""
        self._pos = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False
        self._item_start = None

    def feed(self, chunk: str) -> list[dict]:
        self._buffer += chunk
        items = []
        while self._pos < len(self._buffer):
            ch = self._buffer[self._pos]
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif ch == "\\":
                    self._escaped = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                self._in_string = True
            elif ch in "{[":
                self._depth += 1
                if ch == "{" and self._depth == self.ITEM_DEPTH:
                    self._item_start = self._pos
            elif ch in "}]":
                if ch == "}" and self._depth == self.ITEM_DEPTH and self._item_start is not None:
                    try:
                        item = json.loads(self._buffer[self._item_start:self._pos + 1])
                    except ValueError:
                        item = None
                    if isinstance(item, dict):
                        items.append(item)
                    self._item_start = None
                self._depth -= 1
            self._pos += 1
        return items


class AnthropicLLM:
    def __init__(self, api_key: str | None = None):
        self._api_key = ANTHROPIC_API_KEY if api_key is None else api_key
        self._client = None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not self._api_key:
                raise RuntimeError(
                    "ANTHROPIC_API_KEY not set. Add it to your .env file."
                )
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def _record_usage(self, response, phase: str, conversation_id: str | None):
        logger.info(
            f"[llm] phase={phase} model={response.model} "
            f"stop_reason={response.stop_reason} "
            f"input_tokens={response.usage.input_tokens} "
            f"output_tokens={response.usage.output_tokens}"
        )
        await database.log_llm_usage(response.usage, response.model, phase, conversation_id)

    async def stream_step(
        self,
        model: str,
        system: str,
        messages: list[dict],
        tools: list[dict],
        conversation_id: str | None = None,
    ):
        """One model call. Yields tuples of (event_type, data):

          ("text", delta_str)          incremental assistant text
          ("tool_call", ToolCallPart)  a requested tool invocation
          ("finish", stop_reason)      the call completed
        """
        client = self._get_client()
        kwargs = {
            "model": model,
            "max_tokens": MAX_TOKENS,
            "system": system,
            "messages": messages,
        }
        if tools:
            kwargs["tools"] = tools

        async with client.messages.stream(**kwargs) as stream:
            async for text in stream.text_stream:
                yield ("text", text)
            response = await stream.get_final_message()

        await self._record_usage(response, "chat", conversation_id)

        for block in response.content:
            if block.type == "tool_use":
                yield ("tool_call", ToolCallPart(
                    tool_call_id=block.id,
                    tool_name=block.name,
                    args=dict(block.input or {}),
                ))
        yield ("finish", response.stop_reason)

    async def stream_text(
        self,
        model: str,
        system: str,
        prompt: str,
        conversation_id: str | None = None,
    ):
        """Yield text deltas for a single-prompt generation."""
        client = self._get_client()
        async with client.messages.stream(
            model=model,
            max_tokens=MAX_TOKENS,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        ) as stream:
            async for text in stream.text_stream:
                yield text
            response = await stream.get_final_message()

        await self._record_usage(response, "document", conversation_id)

    async def generate_suggestions(
        self,
        model: str,
        system: str,
        content: str,
        conversation_id: str | None = None,
    ):
        """Yield up to MAX_SUGGESTIONS dicts with originalSentence /
        suggestedSentence / description keys, each as soon as the model has
        finished writing it."""
        client = self._get_client()
        scanner = SuggestionScanner()
        emitted = 0

        async with client.messages.stream(
            model=model,
            max_tokens=MAX_TOKENS,
            system=system,
            messages=[{"role": "user", "content": content}],
            tools=[SUGGESTION_TOOL],
            tool_choice={"type": "tool", "name": SUGGESTION_TOOL["name"]},
        ) as stream:
            async for event in stream:
                if event.type != "content_block_delta" or event.delta.type != "input_json_delta":
                    continue
                for item in scanner.feed(event.delta.partial_json):
                    if emitted < MAX_SUGGESTIONS:
                        emitted += 1
                        yield item
            response = await stream.get_final_message()

        await self._record_usage(response, "suggestions", conversation_id)

        # The final tool input is authoritative for anything the scanner missed
        items: list = []
        for block in response.content:
            if block.type == "tool_use" and block.name == SUGGESTION_TOOL["name"]:
                items = (block.input or {}).get("suggestions") or []
                break

        for item in items[emitted:MAX_SUGGESTIONS]:
            if isinstance(item, dict):
                yield item


# ---------------------------------------------------------------------------
# Module-level service (overridable in tests)
# ---------------------------------------------------------------------------
_llm = None


def get_llm():
    global _llm
    if _llm is None:
        _llm = AnthropicLLM()
    return _llm


def set_llm(llm) -> None:
    global _llm
    _llm = llm
