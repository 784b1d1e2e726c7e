from __future__ import annotations
"""
Chat Routes (web)
=================
Turn submission, deletion and listing for browser clients. A native client
calling these routes gets the buffered JSON body instead of a stream.
"""
import logging

from fastapi import APIRouter, Header, Query, Request

import companion.database as database
from companion.auth import resolve_principal
from companion.channel import BufferedSink, LiveSink
from companion.config import SESSION_COOKIE_NAME
from companion.controller import TurnController, TurnError
from companion.delivery import (
    buffered_response,
    error_response,
    is_native_client,
    json_response,
    live_response,
    start_live,
)
from companion.models import ChatRequest
from companion.store import ScopedStore

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_current_user(request: Request, authorization: str | None):
    return await resolve_principal(authorization, request.cookies.get(SESSION_COOKIE_NAME))


# Routes: Turn submission
# ===========================================================================

@router.post("/api/chat")
async def submit_turn(
    req: ChatRequest,
    request: Request,
    authorization: str | None = Header(default=None),
    user_agent: str | None = Header(default=None),
):
    """Persist the user turn and generate a reply (stream, or JSON for native clients)."""
    principal = await get_current_user(request, authorization)
    native = is_native_client(user_agent)

    controller = TurnController(
        ScopedStore(principal) if principal else None,
        principal,
        surface="mobile" if native else "web",
    )
    try:
        prepared = await controller.prepare(req.id, req.messages, req.modelId)
    except TurnError as e:
        return error_response(e.status_code, e.message)

    if native:
        try:
            result = await controller.generate(prepared, BufferedSink())
        except TurnError as e:
            return error_response(e.status_code, e.message)
        return buffered_response(result)

    sink = LiveSink()
    start_live(controller.generate(prepared, sink))
    return live_response(sink)


@router.delete("/api/chat")
async def delete_chat(
    request: Request,
    conversation_id: str | None = Query(default=None, alias="id"),
    authorization: str | None = Header(default=None),
):
    """Delete a conversation the caller owns."""
    if not conversation_id:
        return error_response(404, "Not Found")

    principal = await get_current_user(request, authorization)
    if principal is None:
        return error_response(401, "Unauthorized")

    store = ScopedStore(principal)
    conversation = await store.get_conversation(conversation_id)
    if conversation is None:
        return error_response(404, "Chat not found")
    if conversation["user_id"] != principal["id"]:
        return error_response(401, "Unauthorized")

    try:
        await store.delete_conversation(conversation_id)
    except database.StoreAuthorizationError:
        return error_response(401, "Unauthorized")

    logger.info(f"[chat] user {principal['id']} deleted conversation {conversation_id}")
    return json_response({"message": "Chat deleted"})


# Routes: History & Documents
# ===========================================================================

@router.get("/api/history")
async def list_history(request: Request, authorization: str | None = Header(default=None)):
    """Conversations owned by the caller, newest first."""
    principal = await get_current_user(request, authorization)
    if principal is None:
        return error_response(401, "Unauthorized")
    return json_response(await ScopedStore(principal).list_conversations())


@router.get("/api/document")
async def get_document(
    request: Request,
    document_id: str | None = Query(default=None, alias="id"),
    authorization: str | None = Header(default=None),
):
    if not document_id:
        return error_response(400, "Missing id parameter")

    principal = await get_current_user(request, authorization)
    if principal is None:
        return error_response(401, "Unauthorized")

    document = await database.get_document(document_id)
    if document is None:
        return error_response(404, "Document not found")
    if document["user_id"] != principal["id"]:
        return error_response(401, "Unauthorized")
    return json_response(document)


@router.get("/api/suggestions")
async def get_suggestions(
    request: Request,
    document_id: str | None = Query(default=None, alias="documentId"),
    authorization: str | None = Header(default=None),
):
    if not document_id:
        return error_response(400, "Missing documentId parameter")

    principal = await get_current_user(request, authorization)
    if principal is None:
        return error_response(401, "Unauthorized")

    document = await database.get_document(document_id)
    if document is None:
        return error_response(404, "Document not found")
    if document["user_id"] != principal["id"]:
        return error_response(401, "Unauthorized")
    return json_response(await database.get_suggestions(document_id))


@router.get("/api/auth/me")
async def auth_me(request: Request, authorization: str | None = Header(default=None)):
    principal = await get_current_user(request, authorization)
    if principal is None:
        return error_response(401, "Unauthorized")
    return json_response({"user": principal})
