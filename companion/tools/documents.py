"""
Document Tools
==============
Generative sub-tasks: each tool is its own LLM call whose output streams to
the client as annotations tagged with the tool call id.

Annotation sequence for createDocument:

    {"type": "id", ...} -> {"type": "title", ...} -> {"type": "clear"}
    -> {"type": "text-delta", ...}* -> {"type": "finish"}

updateDocument skips the id/title announcement. requestSuggestions emits one
{"type": "suggestion"} per item. Documents are persisted only when a
principal is attached to the turn.
"""
from __future__ import annotations

import logging
import uuid

import companion.database as database
from companion.prompts import DOCUMENT_PROMPT, SUGGESTIONS_PROMPT, update_document_prompt

logger = logging.getLogger(__name__)

NOT_FOUND = {"error": "Document not found"}

CREATE_DESCRIPTION = "Create a document for a writing activity"

CREATE_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "description": "Title of the document"},
    },
    "required": ["title"],
}

UPDATE_DESCRIPTION = "Update a document with the given description"

UPDATE_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "description": "The ID of the document to update"},
        "description": {"type": "string", "description": "The description of changes that need to be made"},
    },
    "required": ["id", "description"],
}

SUGGESTIONS_DESCRIPTION = "Request suggestions for a document"

SUGGESTIONS_SCHEMA = {
    "type": "object",
    "properties": {
        "documentId": {"type": "string", "description": "The ID of the document to request edits"},
    },
    "required": ["documentId"],
}


async def _owned_document(ctx, document_id: str | None) -> dict | None:
    if not document_id or ctx.user_id is None:
        return None
    document = await database.get_document(document_id)
    if document is None or document["user_id"] != ctx.user_id:
        return None
    return document


async def _stream_body(ctx, system: str, prompt: str) -> str:
    ctx.annotate({"type": "clear", "content": ""})
    chunks: list[str] = []
    async for delta in ctx.llm.stream_text(
        ctx.model.api_identifier, system, prompt, conversation_id=ctx.conversation_id
    ):
        chunks.append(delta)
        ctx.annotate({"type": "text-delta", "content": delta})
    ctx.annotate({"type": "finish", "content": ""})
    return "".join(chunks)


async def create_document(args: dict, ctx) -> dict:
    title = args.get("title") or "Untitled"
    document_id = str(uuid.uuid4())

    ctx.annotate({"type": "id", "content": document_id})
    ctx.annotate({"type": "title", "content": title})

    content = await _stream_body(ctx, DOCUMENT_PROMPT, title)

    if ctx.user_id is not None:
        await database.save_document(document_id, title, content, ctx.user_id)
        logger.info(f"[documents] created {document_id} ({len(content)} chars)")
    else:
        logger.info(f"[documents] {document_id} not persisted: no principal")

    return {
        "id": document_id,
        "title": title,
        "content": "A document was created and is now visible to the user.",
    }


async def update_document(args: dict, ctx) -> dict:
    document = await _owned_document(ctx, args.get("id"))
    if document is None:
        return dict(NOT_FOUND)

    content = await _stream_body(
        ctx,
        update_document_prompt(document["content"]),
        args.get("description") or "",
    )

    await database.update_document_content(document["id"], content)
    logger.info(f"[documents] updated {document['id']} ({len(content)} chars)")

    return {
        "id": document["id"],
        "title": document["title"],
        "content": "The document has been updated successfully.",
    }


async def request_suggestions(args: dict, ctx) -> dict:
    document = await _owned_document(ctx, args.get("documentId"))
    if document is None or not document["content"]:
        return dict(NOT_FOUND)

    suggestions: list[dict] = []
    async for item in ctx.llm.generate_suggestions(
        ctx.model.api_identifier,
        SUGGESTIONS_PROMPT,
        document["content"],
        conversation_id=ctx.conversation_id,
    ):
        suggestion = {
            "id": str(uuid.uuid4()),
            "documentId": document["id"],
            "originalText": item.get("originalSentence", ""),
            "suggestedText": item.get("suggestedSentence", ""),
            "description": item.get("description", ""),
            "isResolved": False,
        }
        ctx.annotate({"type": "suggestion", "content": suggestion})
        suggestions.append(suggestion)

    saved = await database.save_suggestions([
        {
            "id": s["id"],
            "document_id": s["documentId"],
            "document_created_at": document["created_at"],
            "original_text": s["originalText"],
            "suggested_text": s["suggestedText"],
            "description": s["description"],
            "is_resolved": False,
            "user_id": ctx.user_id,
        }
        for s in suggestions
    ])
    logger.info(f"[documents] {saved} suggestions for {document['id']}")

    return {
        "id": document["id"],
        "title": document["title"],
        "message": "Suggestions have been added to the document",
    }
