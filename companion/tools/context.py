"""
Tool execution context handed to every tool body.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from companion.channel import ANNOTATION, StreamEvent
from companion.config import ModelConfig


@dataclass
class ToolContext:
    principal: dict | None
    conversation_id: str
    call_id: str
    model: ModelConfig
    llm: Any
    emit: Callable[[StreamEvent], None]

    @property
    def user_id(self) -> str | None:
        return self.principal["id"] if self.principal else None

    def annotate(self, data: dict) -> None:
        """Forward a tool side-channel event tagged with this call's id."""
        self.emit(StreamEvent(ANNOTATION, data, call_id=self.call_id))
