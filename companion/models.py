from __future__ import annotations
"""
Pydantic Request Models
"""
from typing import Any

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=200)
    messages: list[dict[str, Any]]
    modelId: str = Field(..., min_length=1)
