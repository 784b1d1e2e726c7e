"""
Streaming channel: one producer contract, two sinks.

The turn controller calls ``emit(event)`` for every text delta, tool call,
tool result and tool annotation, then ``finish()`` exactly once.

    LiveSink      queues events and serves them as Server-Sent Events while
                  generation is still running (web).
    BufferedSink  keeps every event in memory; the delivery adapter renders
                  the final turns as one JSON body (native mobile clients).
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Event kinds
TEXT_DELTA = "text-delta"
TOOL_CALL = "tool-call"
TOOL_RESULT = "tool-result"
ANNOTATION = "annotation"
MESSAGE_ID = "message-id"
STEP_FINISH = "step-finish"
FINISH = "finish"
ERROR = "error"


@dataclass
class StreamEvent:
    kind: str
    data: dict = field(default_factory=dict)
    call_id: str | None = None

    def payload(self) -> dict:
        payload = dict(self.data)
        if self.call_id is not None:
            payload["toolCallId"] = self.call_id
        return payload


def encode_sse(event: StreamEvent) -> str:
    payload = json.dumps(event.payload(), ensure_ascii=False, default=str)
    return f"event: {event.kind}\ndata: {payload}\n\n"


class BufferedSink:
    """Accumulates the whole generation server-side."""

    def __init__(self):
        self.events: list[StreamEvent] = []
        self.finished = False

    def emit(self, event: StreamEvent) -> None:
        if self.finished:
            return
        self.events.append(event)

    def finish(self) -> None:
        self.finished = True

    def text(self) -> str:
        return "".join(e.data.get("text", "") for e in self.events if e.kind == TEXT_DELTA)


class LiveSink:
    """Feeds events to an open SSE response as they are produced.

    Once the client disconnects, further emits are dropped; the producer keeps
    running so tool side effects (documents, suggestions) still persist.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.sent: list[StreamEvent] = []
        self.finished = False
        self.disconnected = False

    def emit(self, event: StreamEvent) -> None:
        if self.finished or self.disconnected:
            return
        self._queue.put_nowait(event)

    def finish(self) -> None:
        if self.finished:
            return
        self.finished = True
        self._queue.put_nowait(None)

    async def stream(self):
        """Async generator of SSE frames; ends when ``finish()`` is called."""
        completed = False
        try:
            while True:
                event = await self._queue.get()
                if event is None:
                    completed = True
                    return
                self.sent.append(event)
                yield encode_sse(event)
        finally:
            if not completed:
                self.disconnected = True
                logger.info("[channel] client disconnected; further events dropped")
