from __future__ import annotations
"""
Mobile Routes
=============
Bearer-only endpoints for the native app. Conversation access goes through
the privileged store; every handler checks ownership itself before reading
or writing.
"""
import logging

from fastapi import APIRouter, Header, Query

import companion.codec as codec
from companion.auth import bearer_token, resolve_bearer
from companion.channel import BufferedSink
from companion.controller import TurnController, TurnError
from companion.delivery import buffered_response, error_response, json_response
from companion.models import ChatRequest
from companion.store import AdminStore

logger = logging.getLogger(__name__)

router = APIRouter()

admin_store = AdminStore()


async def require_bearer_user(authorization: str | None):
    """Returns (principal, None) or (None, error response)."""
    if bearer_token(authorization) is None:
        return None, error_response(401, "Bearer token required")
    principal = await resolve_bearer(authorization)
    if principal is None:
        return None, error_response(401, "Invalid token")
    return principal, None


@router.post("/api/mobile-chat")
async def mobile_chat(req: ChatRequest, authorization: str | None = Header(default=None)):
    """Submit a turn and block until the whole reply is generated and stored."""
    principal, denied = await require_bearer_user(authorization)
    if denied is not None:
        return denied

    controller = TurnController(admin_store, principal, surface="mobile")
    try:
        prepared = await controller.prepare(req.id, req.messages, req.modelId)
        result = await controller.generate(prepared, BufferedSink())
    except TurnError as e:
        return error_response(e.status_code, e.message)

    logger.info(
        f"[mobile] turn for {req.id}: {len(result.rows)} message(s) in {result.steps} tool step(s)"
    )
    return buffered_response(result)


@router.get("/api/mobile-history")
async def mobile_history(authorization: str | None = Header(default=None)):
    """The caller's conversations, most recently updated first."""
    principal, denied = await require_bearer_user(authorization)
    if denied is not None:
        return denied

    conversations = await admin_store.list_conversations(principal["id"], order_by="updated_at")
    return json_response([
        {
            "id": c["id"],
            "title": c["title"],
            "created_at": c["created_at"],
            "updated_at": c["updated_at"],
        }
        for c in conversations
    ])


@router.get("/api/mobile-messages")
async def mobile_messages(
    chat_id: str | None = Query(default=None, alias="chatId"),
    authorization: str | None = Header(default=None),
):
    """Turns of one conversation, oldest first, decoded for display."""
    principal, denied = await require_bearer_user(authorization)
    if denied is not None:
        return denied

    if not chat_id:
        return error_response(400, "Missing chatId parameter")

    conversation = await admin_store.get_conversation(chat_id)
    if conversation is None:
        return error_response(404, "Chat not found")
    if conversation["user_id"] != principal["id"]:
        return error_response(401, "Unauthorized")

    rows = await admin_store.get_turns(chat_id)
    return json_response([codec.decode_for_display(row) for row in rows])
