#!/usr/bin/env python3
"""
Turn Controller Tests
=====================
End-to-end turns against a temp database with a scripted LLM: the tool
round-trip, ownership refusal, the step budget, failure handling, the
duplicate-creation race, surfaces, and live/buffered parity.
"""
from __future__ import annotations
import asyncio
import os
import sys
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent))

import companion.database as database
from companion.channel import ERROR, FINISH, MESSAGE_ID, STEP_FINISH, TOOL_CALL, TOOL_RESULT, BufferedSink, LiveSink
from companion.codec import decode
from companion.controller import TurnController, TurnError, conversation_title
from companion.store import AdminStore, ScopedStore
from companion.turns import Turn
from fakes import FakeResponse, ScriptedLLM, count_rows, fresh_db, make_user, tool_step

PASS = 0
FAIL = 0

MODEL_ID = "sonnet-4.5"


def check(name: str, condition: bool, detail: str = ""):
    global PASS, FAIL
    if condition:
        PASS += 1
        print(f"  ✅ {name}")
    else:
        FAIL += 1
        print(f"  ❌ {name} — {detail}")
    assert condition, f"{name}: {detail}"


def _user_message(text: str, message_id: str = "m1") -> list[dict]:
    return [{"id": message_id, "role": "user", "content": text}]


async def _run(controller: TurnController, conversation_id: str, messages: list[dict], sink=None):
    sink = sink if sink is not None else BufferedSink()
    prepared = await controller.prepare(conversation_id, messages, MODEL_ID)
    result = await controller.generate(prepared, sink)
    return result, sink


def _error(coro) -> TurnError | None:
    try:
        asyncio.run(coro)
    except TurnError as e:
        return e
    return None


# ── Tool Round-Trip ─────────────────────────────────────────────────────

def test_weather_round_trip():
    print("\n── Weather Round-Trip (buffered) ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")
    llm = ScriptedLLM([
        tool_step("call_w", "getWeather", {}),
        [("text", "It's 29°C and sunny in Koh Phangan.")],
    ])

    forecast = {"current": {"temperature_2m": 29, "weather_code": 0}}
    with patch("companion.tools.weather.requests.get", return_value=FakeResponse(forecast)):
        result, sink = asyncio.run(_run(
            TurnController(ScopedStore(alice), alice, llm=llm),
            "conv-weather",
            _user_message("What's the weather like?"),
        ))

    messages = result.messages()
    roles = [m["role"] for m in messages]
    check("Persisted response: call, result, answer", roles == ["assistant", "tool", "assistant"], str(roles))

    answers = [m for m in messages if m["role"] == "assistant" and decode("assistant", m["content"]).text()]
    check("Exactly one assistant message with text", len(answers) == 1)
    check("Answer references the data", "29" in decode("assistant", answers[0]["content"]).text())

    tool_turn = decode("tool", messages[1]["content"])
    check("One tool result", len(tool_turn.content) == 1)
    check("Tool result is the forecast", tool_turn.content[0].result == forecast)
    check("One round-trip", result.steps == 1)

    check("Conversation created with title",
          asyncio.run(database.get_conversation("conv-weather"))["title"] == "What's the weather like?")
    check("User turn plus three response turns stored",
          count_rows(db, "turns", "conversation_id = ?", ("conv-weather",)) == 4)

    stored_ids = [t["id"] for t in asyncio.run(database.get_turns("conv-weather"))]
    check("Returned ids are the persisted ids", [m["id"] for m in messages] == stored_ids[1:])

    kinds = [e.kind for e in sink.events]
    check("Tool call streamed before its result", kinds.index(TOOL_CALL) < kinds.index(TOOL_RESULT))
    check("Step boundary emitted", STEP_FINISH in kinds)
    check("Message ids follow persistence", kinds[-3:] == [MESSAGE_ID, MESSAGE_ID, FINISH], str(kinds[-3:]))
    check("Sink finished", sink.finished)
    os.unlink(db)


# ── Ownership ───────────────────────────────────────────────────────────

def test_foreign_conversation():
    print("\n── Foreign Conversation ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")
    bob, _ = make_user("bob@example.com")
    asyncio.run(_run(TurnController(ScopedStore(alice), alice, llm=ScriptedLLM()), "conv-a", _user_message("Hi")))
    before = count_rows(db, "turns")

    llm = ScriptedLLM()
    err = _error(_run(TurnController(ScopedStore(bob), bob, llm=llm), "conv-a", _user_message("Mine now")))
    check("Web: 401 Unauthorized", err is not None and err.status_code == 401 and err.message == "Unauthorized")

    err = _error(_run(TurnController(AdminStore(), bob, "mobile", llm=llm), "conv-a", _user_message("Mine now")))
    check("Mobile (privileged store): 401", err is not None and err.status_code == 401)

    check("No turns written", count_rows(db, "turns") == before)
    check("Model never called", llm.step_calls == [])
    os.unlink(db)


def test_request_checks():
    print("\n── Request Checks ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")
    llm = ScriptedLLM()

    err = _error(_run(TurnController(ScopedStore(alice), None, llm=llm), "c1", _user_message("Hi")))
    check("No principal: 401", err is not None and err.status_code == 401)

    async def unknown_model():
        controller = TurnController(ScopedStore(alice), alice, llm=llm)
        await controller.prepare("c1", _user_message("Hi"), "gpt-imaginary")

    err = _error(unknown_model())
    check("Unknown model: 404", err is not None and (err.status_code, err.message) == (404, "Model not found"))

    assistant_only = [{"id": "a", "role": "assistant", "content": "Hello!"}]
    err = _error(_run(TurnController(ScopedStore(alice), alice, llm=llm), "c1", assistant_only))
    check("No user message: 400",
          err is not None and (err.status_code, err.message) == (400, "No user message found"))

    for label, content in (("Empty", ""), ("Blank", "   \n"), ("Empty parts", []),
                           ("Blank text part", [{"type": "text", "text": " "}])):
        err = _error(_run(TurnController(ScopedStore(alice), alice, llm=llm), "c-empty", _user_message(content)))
        check(f"{label} user content: 400",
              err is not None and (err.status_code, err.message) == (400, "No user message found"),
              repr(err))

    check("Nothing persisted", count_rows(db, "conversations") == 0 and count_rows(db, "turns") == 0)
    check("Model never called", llm.step_calls == [], str(llm.step_calls))
    os.unlink(db)


def test_unreadable_tool_invocation():
    print("\n── Unreadable Tool Invocation ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")
    llm = ScriptedLLM()
    messages = [
        {"id": "m0", "role": "user", "content": "Weather?"},
        {"id": "a0", "role": "assistant", "content": "Sunny.",
         "toolInvocations": [{"toolName": "getWeather", "args": {}, "result": {"temp": 31}}]},
        {"id": "m1", "role": "user", "content": "And tomorrow?"},
    ]

    result, _ = asyncio.run(_run(TurnController(ScopedStore(alice), alice, llm=llm), "c-bad-call", messages))
    check("Turn completes", result.steps == 0 and len(result.rows) == 1, str(result.rows))
    sent = llm.step_calls[0]["messages"]
    check("Invocation without an id left out of the model history",
          not any(b.get("type") in ("tool_use", "tool_result") for m in sent for b in m["content"]), str(sent))
    check("User turn and reply saved", count_rows(db, "turns") == 2, str(count_rows(db, "turns")))
    os.unlink(db)


# ── Step Budget ─────────────────────────────────────────────────────────

def test_step_budget():
    print("\n── Step Budget ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")
    llm = ScriptedLLM([tool_step(f"call_{i}", "getEvents", {"timeFrame": "today"}) for i in range(1, 7)])

    result, sink = asyncio.run(_run(
        TurnController(ScopedStore(alice), alice, llm=llm), "conv-loop", _user_message("Everything on today?")
    ))

    check("Five round-trips executed", result.steps == 5, str(result.steps))
    check("Six model calls", len(llm.step_calls) == 6, str(len(llm.step_calls)))
    check("Ten response turns persisted", len(result.rows) == 10, str(len(result.rows)))

    stored = asyncio.run(database.get_turns("conv-loop"))
    kept_calls = [c.tool_call_id for t in stored if t["role"] == "assistant" for c in decode("assistant", t["content"]).tool_calls()]
    check("Sixth call stripped", "call_6" not in kept_calls and len(kept_calls) == 5, str(kept_calls))
    check("Sixth call was still streamed", any(e.kind == TOOL_CALL and e.call_id == "call_6" for e in sink.events))
    check("Sixth call never executed", not any(e.kind == TOOL_RESULT and e.call_id == "call_6" for e in sink.events))
    check("Finish reports five steps", sink.events[-1].data == {"finishReason": "stop", "steps": 5})
    os.unlink(db)


# ── Failures ────────────────────────────────────────────────────────────

def test_generation_failure_keeps_user_turn():
    print("\n── Generation Failure ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")
    sink = BufferedSink()

    err = _error(_run(
        TurnController(ScopedStore(alice), alice, llm=ScriptedLLM(fail_on_step=1)),
        "conv-fail",
        _user_message("Hello?"),
        sink,
    ))
    check("500 with generic message",
          err is not None and (err.status_code, err.message) == (500, "An error occurred while processing your request"))
    check("User turn not rolled back", count_rows(db, "turns", "role = 'user'") == 1)
    check("No assistant turns", count_rows(db, "turns", "role != 'user'") == 0)
    check("Error event then finish", sink.events[-1].kind == ERROR and sink.finished)
    os.unlink(db)


def test_persist_failure():
    print("\n── Response Persist Failure ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")

    class FlakyStore(ScopedStore):
        def __init__(self, principal):
            super().__init__(principal)
            self.response_attempts = 0

        async def save_turns(self, conversation_id, turns):
            if turns[0]["role"] != "user":
                self.response_attempts += 1
                raise OSError("disk full")
            return await super().save_turns(conversation_id, turns)

    store = FlakyStore(alice)
    sink = BufferedSink()
    with patch("companion.controller.PERSIST_BACKOFF_S", 0):
        err = _error(_run(TurnController(store, alice, llm=ScriptedLLM()), "conv-disk", _user_message("Hi"), sink))

    check("500 Failed to save response",
          err is not None and (err.status_code, err.message) == (500, "Failed to save response"))
    check("Retried three times", store.response_attempts == 3, str(store.response_attempts))
    check("No message ids announced", not any(e.kind == MESSAGE_ID for e in sink.events))
    check("User turn kept", count_rows(db, "turns", "role = 'user'") == 1)
    os.unlink(db)


# ── Duplicate Creation ──────────────────────────────────────────────────

class RacingStore(ScopedStore):
    """Sees no conversation on the first read, as if another request created
    it between the read and the insert."""

    def __init__(self, principal):
        super().__init__(principal)
        self.reads = 0

    async def get_conversation(self, conversation_id):
        self.reads += 1
        if self.reads == 1:
            return None
        return await super().get_conversation(conversation_id)


def test_duplicate_race():
    print("\n── Concurrent Creation ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")
    bob, _ = make_user("bob@example.com")
    asyncio.run(database.create_conversation("conv-dup", alice["id"], "Hi"))

    llm = ScriptedLLM()
    result, sink = asyncio.run(_run(TurnController(RacingStore(alice), alice, llm=llm), "conv-dup", _user_message("Hi")))
    check("Owner resubmission accepted", result.rows == [])
    check("No second reply generated", llm.step_calls == [])
    check("Finish marks the duplicate", sink.events[-1].data["finishReason"] == "duplicate" and sink.finished)
    check("User turn recorded", count_rows(db, "turns", "conversation_id = ?", ("conv-dup",)) == 1)
    check("Still one conversation", count_rows(db, "conversations") == 1)

    err = _error(_run(TurnController(RacingStore(bob), bob, llm=llm), "conv-dup", _user_message("Hi")))
    check("Other principal losing the race: 401", err is not None and err.status_code == 401)
    check("Nothing written for the other principal", count_rows(db, "turns") == 1)
    os.unlink(db)


def test_sequential_resubmission():
    print("\n── Sequential Resubmission ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")

    async def twice():
        controller = TurnController(ScopedStore(alice), alice, llm=ScriptedLLM())
        await _run(controller, "conv-again", _user_message("Same question"))
        await _run(controller, "conv-again", _user_message("Same question"))

    asyncio.run(twice())
    check("One conversation", count_rows(db, "conversations") == 1)
    check("Both user turns kept", count_rows(db, "turns", "role = 'user'") == 2)
    check("Both answered", count_rows(db, "turns", "role = 'assistant'") == 2)
    os.unlink(db)


# ── Surfaces ────────────────────────────────────────────────────────────

def test_surfaces():
    print("\n── Surfaces ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")

    web_llm, mobile_llm = ScriptedLLM(), ScriptedLLM()
    asyncio.run(_run(TurnController(ScopedStore(alice), alice, "web", llm=web_llm), "c-web", _user_message("Hi")))
    asyncio.run(_run(TurnController(AdminStore(), alice, "mobile", llm=mobile_llm), "c-mob", _user_message("Hi")))

    web_tools = set(web_llm.step_calls[0]["tools"])
    mobile_tools = set(mobile_llm.step_calls[0]["tools"])
    check("Web offers document tools", "createDocument" in web_tools)
    check("Mobile omits document tools", not mobile_tools & {"createDocument", "updateDocument", "requestSuggestions"})
    check("Mobile keeps lookups", {"getWeather", "getEvents"} <= mobile_tools)
    check("Web prompt adds document guidance",
          len(web_llm.step_calls[0]["system"]) > len(mobile_llm.step_calls[0]["system"]))

    check("Title from user text", conversation_title(Turn("user", "  Where   to eat\nvegan food? ")) == "Where to eat vegan food?")
    check("Title truncated", len(conversation_title(Turn("user", "x" * 200))) == 50)
    check("Empty text falls back", conversation_title(Turn("user", "")) == "New conversation")
    os.unlink(db)


# ── Live / Buffered Parity ──────────────────────────────────────────────

def test_live_buffered_parity():
    print("\n── Live / Buffered Parity ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")

    def script():
        return ScriptedLLM([
            tool_step("call_e", "getEvents", {"timeFrame": "today"}, text="Let me look. "),
            [("text", "Nothing on "), ("text", "today.")],
        ])

    async def live_run():
        sink = LiveSink()
        controller = TurnController(ScopedStore(alice), alice, llm=script())
        prepared = await controller.prepare("conv-live", _user_message("Events?"), MODEL_ID)
        task = asyncio.create_task(controller.generate(prepared, sink))
        frames = [frame async for frame in sink.stream()]
        return await task, sink, frames

    buffered_result, buffered = asyncio.run(_run(
        TurnController(ScopedStore(alice), alice, llm=script()), "conv-buffered", _user_message("Events?")
    ))
    live_result, live, frames = asyncio.run(live_run())

    def shape(events):
        return [(e.kind, e.call_id, None if e.kind == MESSAGE_ID else e.data) for e in events]

    check("Same event sequence on both paths", shape(live.sent) == shape(buffered.events))
    check("Every event framed", len(frames) == len(live.sent))
    check("Same persisted roles",
          [r["role"] for r in live_result.rows] == [r["role"] for r in buffered_result.rows])
    check("Buffered text equals streamed text", buffered.text() == "Let me look. Nothing on today.", buffered.text())
    os.unlink(db)


# ── Run All ─────────────────────────────────────────────────────────────

if __name__ == "__main__":
    print("=" * 60)
    print("TURN CONTROLLER TEST SUITE")
    print("=" * 60)

    for test in (
        test_weather_round_trip,
        test_foreign_conversation,
        test_request_checks,
        test_unreadable_tool_invocation,
        test_step_budget,
        test_generation_failure_keeps_user_turn,
        test_persist_failure,
        test_duplicate_race,
        test_sequential_resubmission,
        test_surfaces,
        test_live_buffered_parity,
    ):
        try:
            test()
        except AssertionError:
            pass

    print("\n" + "=" * 60)
    total = PASS + FAIL
    print(f"RESULTS: {PASS}/{total} passed, {FAIL} failed")
    if FAIL > 0:
        print("❌ SOME TESTS FAILED")
    else:
        print("✅ ALL TESTS PASSED")
    print("=" * 60)

    sys.exit(1 if FAIL > 0 else 0)
