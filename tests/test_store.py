#!/usr/bin/env python3
"""
Store Tests
===========
Scoped vs. privileged store handles, ownership enforcement, idempotent
conversation creation, credentials and usage telemetry. Uses a temp SQLite
database; zero LLM calls.
"""
from __future__ import annotations
import asyncio
import os
import sqlite3
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import companion.database as database
from companion.auth import resolve_principal
from companion.store import AdminStore, ScopedStore
from fakes import count_rows, fresh_db, make_user

PASS = 0
FAIL = 0


def check(name: str, condition: bool, detail: str = ""):
    global PASS, FAIL
    if condition:
        PASS += 1
        print(f"  ✅ {name}")
    else:
        FAIL += 1
        print(f"  ❌ {name} — {detail}")
    assert condition, f"{name}: {detail}"


def _turn(role: str, content: str) -> dict:
    return {"role": role, "content": content}


# ── Ownership ───────────────────────────────────────────────────────────

def test_ownership():
    print("\n── Ownership Enforcement ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")
    bob, _ = make_user("bob@example.com")

    async def scenario():
        as_alice = ScopedStore(alice)
        as_bob = ScopedStore(bob)

        await as_alice.save_conversation("conv-a", alice["id"], "Beaches")
        await as_alice.save_turns("conv-a", [_turn("user", "Best beach?")])

        try:
            await as_bob.save_turns("conv-a", [_turn("user", "hijack")])
            write_refused = False
        except database.StoreAuthorizationError:
            write_refused = True

        try:
            await as_bob.delete_conversation("conv-a")
            delete_refused = False
        except database.StoreAuthorizationError:
            delete_refused = True

        try:
            await as_bob.save_conversation("conv-b", alice["id"], "Forged")
            create_refused = False
        except database.StoreAuthorizationError:
            create_refused = True

        bob_list = await as_bob.list_conversations()
        turns = await as_alice.get_turns("conv-a")
        return write_refused, delete_refused, create_refused, bob_list, turns

    write_refused, delete_refused, create_refused, bob_list, turns = asyncio.run(scenario())
    check("Foreign turn write refused", write_refused)
    check("Foreign delete refused", delete_refused)
    check("Creating for another principal refused", create_refused)
    check("Owner's turns untouched", [t["content"] for t in turns] == ["Best beach?"], str(turns))
    check("Bob sees no conversations", bob_list == [])
    check("Conversation still present", count_rows(db, "conversations", "id = ?", ("conv-a",)) == 1)

    async def owner_delete():
        store = ScopedStore(alice)
        first = await store.delete_conversation("conv-a")
        second = await store.delete_conversation("conv-a")
        return first, second

    first, second = asyncio.run(owner_delete())
    check("Owner delete succeeds", first is True)
    check("Second delete reports absent", second is False)
    check("Turns removed with conversation", count_rows(db, "turns") == 0)
    os.unlink(db)


def test_admin_store():
    print("\n── Privileged Store ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")

    async def scenario():
        admin = AdminStore()
        await admin.save_conversation("conv-1", alice["id"], "Older")
        await admin.save_conversation("conv-2", alice["id"], "Newer")
        # Writing to conv-1 bumps its updated_at
        await asyncio.sleep(0.01)
        await admin.save_turns("conv-1", [_turn("user", "still here?")])
        by_update = await admin.list_conversations(alice["id"], order_by="updated_at")
        by_create = await ScopedStore(alice).list_conversations()
        return by_update, by_create

    by_update, by_create = asyncio.run(scenario())
    check("Admin handle is privileged", AdminStore.privileged and not ScopedStore.privileged)
    check("Mobile listing: most recently updated first",
          [c["id"] for c in by_update] == ["conv-1", "conv-2"], str([c["id"] for c in by_update]))
    check("Web listing: newest created first",
          [c["id"] for c in by_create] == ["conv-2", "conv-1"], str([c["id"] for c in by_create]))
    os.unlink(db)


# ── Idempotent Creation ─────────────────────────────────────────────────

def test_idempotent_creation():
    print("\n── Idempotent Conversation Creation ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")

    async def scenario():
        store = ScopedStore(alice)
        results = await asyncio.gather(
            store.save_conversation("dup", alice["id"], "First"),
            store.save_conversation("dup", alice["id"], "Second"),
            return_exceptions=True,
        )
        return results

    results = asyncio.run(scenario())
    errors = [r for r in results if isinstance(r, Exception)]
    check("Exactly one create wins", len(errors) == 1, str(results))
    check("Loser gets ConversationExistsError",
          isinstance(errors[0], database.ConversationExistsError))
    check("Error message matches", str(errors[0]) == "Chat ID already exists")
    check("Single conversation row", count_rows(db, "conversations") == 1)
    os.unlink(db)


def test_turn_order():
    print("\n── Turn Ordering ──")
    db = fresh_db()
    alice, _ = make_user("alice@example.com")

    async def scenario():
        store = ScopedStore(alice)
        await store.save_conversation("c", alice["id"], "Order")
        await store.save_turns("c", [_turn("user", "q1")])
        await store.save_turns("c", [_turn("assistant", "a1"), _turn("tool", "t1"), _turn("assistant", "a2")])
        return await store.get_turns("c")

    turns = asyncio.run(scenario())
    check("Turns come back in write order",
          [t["content"] for t in turns] == ["q1", "a1", "t1", "a2"], str([t["content"] for t in turns]))
    check("Every turn got an id", all(t["id"] for t in turns))
    os.unlink(db)


# ── Credentials ─────────────────────────────────────────────────────────

def test_credentials():
    print("\n── Credential Resolution ──")
    db = fresh_db()
    alice, bearer = make_user("alice@example.com", kind="bearer")
    bob, cookie = make_user("bob@example.com", kind="cookie")

    async def expired_token():
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        return await database.create_auth_session(alice["id"], past)

    stale = asyncio.run(expired_token())

    def resolve(authorization, session_cookie):
        user = asyncio.run(resolve_principal(authorization, session_cookie))
        return user["id"] if user else None

    check("Bearer resolves", resolve(f"Bearer {bearer}", None) == alice["id"])
    check("Bearer wins over cookie", resolve(f"Bearer {bearer}", cookie) == alice["id"])
    check("Invalid bearer falls through to cookie", resolve("Bearer nope", cookie) == bob["id"])
    check("Cookie alone resolves", resolve(None, cookie) == bob["id"])
    check("Cookie token is not a bearer token", resolve(f"Bearer {cookie}", None) is None)
    check("Expired token rejected", resolve(f"Bearer {stale}", None) is None)
    check("Nothing presented -> no principal", resolve(None, None) is None)
    check("Malformed header ignored", resolve(f"Token {bearer}", None) is None)
    os.unlink(db)


# ── LLM Usage Tracking ──────────────────────────────────────────────────

def test_llm_usage():
    print("\n── LLM Usage Tracking ──")
    db = fresh_db()

    class FakeUsage:
        input_tokens = 2000
        output_tokens = 500

    async def scenario():
        await database.log_llm_usage(FakeUsage(), "claude-sonnet-4-5-20250929", "chat", "conv-1")
        await database.log_llm_usage(FakeUsage(), "claude-3-5-haiku-20241022", "document", "conv-1")
        await database.log_llm_usage(FakeUsage(), "unknown-model-xyz", "other")

    asyncio.run(scenario())

    conn = sqlite3.connect(db)
    rows = conn.execute(
        "SELECT phase, model, input_tokens, output_tokens, estimated_cost_usd FROM llm_usage ORDER BY id"
    ).fetchall()
    conn.close()

    check("Three rows inserted", len(rows) == 3)
    check("Phases recorded", [r[0] for r in rows] == ["chat", "document", "other"])
    # (2000 * 3.0 + 500 * 15.0) / 1_000_000 = 0.0135
    check("Sonnet cost", abs(rows[0][4] - 0.0135) < 0.0001, f"got {rows[0][4]}")
    # (2000 * 0.8 + 500 * 4.0) / 1_000_000 = 0.0036
    check("Haiku cost", abs(rows[1][4] - 0.0036) < 0.0001, f"got {rows[1][4]}")

    database.set_db_path(str(Path(db).parent / "missing-dir-xyz" / "nowhere.db"))
    try:
        asyncio.run(database.log_llm_usage(FakeUsage(), "claude-sonnet-4-20250514", "chat"))
        survived = True
    except Exception:
        survived = False
    check("Telemetry failure never raises", survived)
    os.unlink(db)


# ── Run All ─────────────────────────────────────────────────────────────

if __name__ == "__main__":
    print("=" * 60)
    print("STORE TEST SUITE")
    print("=" * 60)

    for test in (
        test_ownership,
        test_admin_store,
        test_idempotent_creation,
        test_turn_order,
        test_credentials,
        test_llm_usage,
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
