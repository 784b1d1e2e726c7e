"""
Turn Controller
===============
Drives one submitted chat turn:

    Init -> UserPersisted -> Generating -> ToolStep* -> Sanitizing
         -> Persisted -> Delivered

``prepare()`` covers Init -> UserPersisted and raises ``TurnError`` for
anything that must become an HTTP status (nothing has been streamed yet).
``generate()`` runs the model/tool loop against a sink and returns the
persisted result; the live path runs it as a background task and that task
is the result future.

The user turn written in ``prepare()`` is never rolled back. If generation or
the response write later fails, the user's message stays in history.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field

import companion.codec as codec
from companion.channel import (
    ERROR,
    FINISH,
    MESSAGE_ID,
    STEP_FINISH,
    TEXT_DELTA,
    TOOL_CALL,
    TOOL_RESULT,
    StreamEvent,
)
from companion.config import (
    DEFAULT_TITLE,
    MAX_STEPS,
    PERSIST_ATTEMPTS,
    SURFACE_TOOLS,
    TITLE_MAX_CHARS,
    ModelConfig,
    find_model,
)
from companion.database import ConversationExistsError, StoreAuthorizationError
from companion.llm import get_llm
from companion.prompts import system_prompt
from companion.tools.context import ToolContext
from companion.tools.registry import allowed_tools, declarations, execute_tool
from companion.turns import (
    TextPart,
    Turn,
    from_client_messages,
    most_recent_user_turn,
    sanitize_response_turns,
    to_anthropic_messages,
)

logger = logging.getLogger(__name__)

PERSIST_BACKOFF_S = 0.2


class TurnError(Exception):
    """A turn failure with the HTTP status it maps to."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass
class PreparedTurn:
    conversation_id: str
    model: ModelConfig
    history: list[Turn]
    user_turn_id: str
    # Resubmission of a conversation created concurrently; no reply is generated
    duplicate: bool = False


@dataclass
class TurnResult:
    conversation_id: str
    turns: list[Turn] = field(default_factory=list)
    rows: list[dict] = field(default_factory=list)
    steps: int = 0

    def messages(self) -> list[dict]:
        """``[{id, role, content}]`` for the buffered JSON body."""
        return [
            {"id": row["id"], "role": row["role"], "content": row["content"]}
            for row in self.rows
        ]


def conversation_title(user_turn: Turn) -> str:
    text = " ".join(user_turn.text().split())
    return text[:TITLE_MAX_CHARS] if text else DEFAULT_TITLE


class TurnController:
    def __init__(
        self,
        store,
        principal: dict | None,
        surface: str = "web",
        llm=None,
        max_steps: int = MAX_STEPS,
    ):
        self.store = store
        self.principal = principal
        self.surface = surface
        self.llm = llm or get_llm()
        self.max_steps = max_steps
        self.allowed = allowed_tools(SURFACE_TOOLS[surface])

    # ------------------------------------------------------------------
    # Init -> UserPersisted
    # ------------------------------------------------------------------

    async def prepare(self, conversation_id: str, messages: list[dict], model_id: str) -> PreparedTurn:
        if not self.principal:
            raise TurnError(401, "Unauthorized")

        model = find_model(model_id)
        if model is None:
            raise TurnError(404, "Model not found")

        try:
            history = from_client_messages(messages)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.info(f"[turn] rejecting unreadable messages for {conversation_id}: {e!r}")
            raise TurnError(400, "Invalid messages") from e

        user_turn = most_recent_user_turn(history)
        if user_turn is None or user_turn.is_empty():
            raise TurnError(400, "No user message found")

        duplicate = False
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            try:
                await self.store.save_conversation(
                    conversation_id, self.principal["id"], conversation_title(user_turn)
                )
                logger.info(f"[turn] created conversation {conversation_id}")
            except ConversationExistsError:
                # Lost the create race. Only the owner may continue.
                logger.info(f"[turn] conversation {conversation_id} already exists; accepting resubmission")
                conversation = await self.store.get_conversation(conversation_id)
                duplicate = True
            except StoreAuthorizationError as e:
                raise TurnError(401, "Unauthorized") from e

        if conversation is not None and conversation["user_id"] != self.principal["id"]:
            logger.warning(
                f"[turn] user {self.principal['id']} denied access to conversation {conversation_id}"
            )
            raise TurnError(401, "Unauthorized")

        user_turn_id = str(uuid.uuid4())
        try:
            await self.store.save_turns(conversation_id, [codec.encode_row(user_turn, user_turn_id)])
        except StoreAuthorizationError as e:
            raise TurnError(401, "Unauthorized") from e
        except Exception as e:
            logger.exception(f"[turn] failed to save user turn for {conversation_id}")
            raise TurnError(500, "Failed to save message") from e

        return PreparedTurn(
            conversation_id=conversation_id,
            model=model,
            history=history,
            user_turn_id=user_turn_id,
            duplicate=duplicate,
        )

    # ------------------------------------------------------------------
    # UserPersisted -> ... -> Persisted
    # ------------------------------------------------------------------

    async def generate(self, prepared: PreparedTurn, sink) -> TurnResult:
        if prepared.duplicate:
            sink.emit(StreamEvent(FINISH, {"finishReason": "duplicate", "steps": 0}))
            sink.finish()
            return TurnResult(prepared.conversation_id)

        try:
            produced, steps = await self._run_steps(prepared, sink)
        except Exception as e:
            logger.exception(f"[turn] generation failed for {prepared.conversation_id}")
            sink.emit(StreamEvent(ERROR, {"message": "An error occurred while generating a response"}))
            sink.finish()
            raise TurnError(500, "An error occurred while processing your request") from e

        turns = sanitize_response_turns(produced)
        dropped = sum(len(t.tool_calls()) for t in produced) - sum(len(t.tool_calls()) for t in turns)
        if dropped:
            logger.info(f"[turn] stripped {dropped} unresolved tool call(s) before persisting")

        rows = [codec.encode_row(turn, str(uuid.uuid4())) for turn in turns]
        try:
            await self._persist(prepared.conversation_id, rows)
        except Exception as e:
            sink.emit(StreamEvent(ERROR, {"message": "Failed to save response"}))
            sink.finish()
            raise TurnError(500, "Failed to save response") from e

        for row in rows:
            if row["role"] == "assistant":
                sink.emit(StreamEvent(MESSAGE_ID, {"messageIdFromServer": row["id"]}))
        sink.emit(StreamEvent(FINISH, {"finishReason": "stop", "steps": steps}))
        sink.finish()

        return TurnResult(prepared.conversation_id, turns=turns, rows=rows, steps=steps)

    async def _run_steps(self, prepared: PreparedTurn, sink) -> tuple[list[Turn], int]:
        """Model <-> tool loop. Returns (produced turns, tool round-trips)."""
        system = system_prompt(self.surface)
        tools = declarations(self.allowed)
        produced: list[Turn] = []
        round_trips = 0

        while True:
            messages = to_anthropic_messages(prepared.history + produced)
            chunks: list[str] = []
            calls = []

            async for kind, data in self.llm.stream_step(
                prepared.model.api_identifier,
                system,
                messages,
                tools,
                conversation_id=prepared.conversation_id,
            ):
                if kind == "text":
                    chunks.append(data)
                    sink.emit(StreamEvent(TEXT_DELTA, {"text": data}))
                elif kind == "tool_call":
                    calls.append(data)
                    sink.emit(StreamEvent(
                        TOOL_CALL,
                        {"toolName": data.tool_name, "args": data.args},
                        call_id=data.tool_call_id,
                    ))

            text = "".join(chunks)
            produced.append(Turn("assistant", ([TextPart(text)] if text else []) + calls))

            if not calls:
                break
            if round_trips >= self.max_steps:
                logger.warning(
                    f"[turn] step budget ({self.max_steps}) exhausted with "
                    f"{len(calls)} open tool call(s) in {prepared.conversation_id}"
                )
                break

            results = await asyncio.gather(*(
                execute_tool(call, self.allowed, self._tool_context(prepared, call.tool_call_id, sink))
                for call in calls
            ))
            for result in results:
                sink.emit(StreamEvent(
                    TOOL_RESULT,
                    {"toolName": result.tool_name, "result": result.result},
                    call_id=result.tool_call_id,
                ))
            produced.append(Turn("tool", list(results)))
            round_trips += 1
            sink.emit(StreamEvent(STEP_FINISH, {"step": round_trips}))

        return produced, round_trips

    def _tool_context(self, prepared: PreparedTurn, call_id: str, sink) -> ToolContext:
        return ToolContext(
            principal=self.principal,
            conversation_id=prepared.conversation_id,
            call_id=call_id,
            model=prepared.model,
            llm=self.llm,
            emit=sink.emit,
        )

    async def _persist(self, conversation_id: str, rows: list[dict]) -> None:
        if not rows:
            return
        for attempt in range(1, PERSIST_ATTEMPTS + 1):
            try:
                await self.store.save_turns(conversation_id, rows)
                return
            except StoreAuthorizationError:
                raise
            except Exception as e:
                logger.warning(
                    f"[turn] saving response for {conversation_id} failed "
                    f"(attempt {attempt}/{PERSIST_ATTEMPTS}): {e}"
                )
                if attempt == PERSIST_ATTEMPTS:
                    raise
                await asyncio.sleep(PERSIST_BACKOFF_S * attempt)
