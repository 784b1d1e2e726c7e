"""
Delivery Adapter
================
Picks the response shape for a turn: native mobile clients get one buffered
JSON body, everyone else a live Server-Sent Events stream. Also owns the
CORS-carrying error bodies shared by every chat route.
"""
from __future__ import annotations

import asyncio
import logging

from fastapi.responses import JSONResponse, StreamingResponse

from companion.channel import LiveSink
from companion.controller import TurnError, TurnResult

logger = logging.getLogger(__name__)

NATIVE_MARKERS = ("Expo", "React Native")

# Live generations keep running after the response handler returns
_background_tasks: set[asyncio.Task] = set()


def cors_headers() -> dict:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization, User-Agent",
    }


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=cors_headers())


def is_native_client(user_agent: str | None) -> bool:
    return any(marker in (user_agent or "") for marker in NATIVE_MARKERS)


def buffered_response(result: TurnResult) -> JSONResponse:
    return JSONResponse({"messages": result.messages()}, headers=cors_headers())


def _finished(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if isinstance(error, TurnError):
        logger.warning(f"[delivery] live turn ended with {error.status_code}: {error.message}")
    elif error is not None:
        logger.error(f"[delivery] live turn crashed: {error!r}")


def start_live(generation) -> asyncio.Task:
    """Schedule a generation coroutine. The task is the turn's result future."""
    task = asyncio.create_task(generation)
    _background_tasks.add(task)
    task.add_done_callback(_finished)
    return task


def live_response(sink: LiveSink) -> StreamingResponse:
    return StreamingResponse(
        sink.stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            **cors_headers(),
        },
    )


def json_response(data, status_code: int = 200) -> JSONResponse:
    return JSONResponse(data, status_code=status_code, headers=cors_headers())
