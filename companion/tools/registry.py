"""
Tool Registry
=============
Closed set of tools the model may call. Names arriving from the model are
parsed into ``ToolName`` once, at the boundary; everything past that point
works with the enum.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from companion.tools import documents, events, explore, weather
from companion.tools.context import ToolContext
from companion.turns import ToolCallPart, ToolResultPart

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    GET_WEATHER = "getWeather"
    GET_EVENTS = "getEvents"
    GET_MARKETS = "getMarkets"
    GET_ACTIVITIES_SERVICES = "getActivitiesServices"
    GET_ITEM_DETAILS = "getItemDetails"
    GET_GUIDES = "getGuides"
    GET_PARTNERS = "getPartners"
    CREATE_DOCUMENT = "createDocument"
    UPDATE_DOCUMENT = "updateDocument"
    REQUEST_SUGGESTIONS = "requestSuggestions"

    @classmethod
    def parse(cls, name: str) -> ToolName | None:
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    input_schema: dict
    execute: Callable[[dict, ToolContext], Awaitable[Any]]

    def declaration(self) -> dict:
        return {
            "name": self.name.value,
            "description": self.description,
            "input_schema": self.input_schema,
        }


REGISTRY: dict[ToolName, ToolSpec] = {
    spec.name: spec
    for spec in [
        ToolSpec(ToolName.GET_WEATHER, weather.DESCRIPTION, weather.INPUT_SCHEMA, weather.get_weather),
        ToolSpec(ToolName.GET_EVENTS, events.EVENTS_DESCRIPTION, events.EVENTS_SCHEMA, events.get_events),
        ToolSpec(ToolName.GET_MARKETS, events.MARKETS_DESCRIPTION, events.MARKETS_SCHEMA, events.get_markets),
        ToolSpec(
            ToolName.GET_ACTIVITIES_SERVICES,
            explore.ACTIVITIES_DESCRIPTION,
            explore.ACTIVITIES_SCHEMA,
            explore.get_activities_services,
        ),
        ToolSpec(
            ToolName.GET_ITEM_DETAILS,
            explore.ITEM_DETAILS_DESCRIPTION,
            explore.ITEM_DETAILS_SCHEMA,
            explore.get_item_details,
        ),
        ToolSpec(ToolName.GET_GUIDES, explore.GUIDES_DESCRIPTION, explore.GUIDES_SCHEMA, explore.get_guides),
        ToolSpec(ToolName.GET_PARTNERS, explore.PARTNERS_DESCRIPTION, explore.PARTNERS_SCHEMA, explore.get_partners),
        ToolSpec(
            ToolName.CREATE_DOCUMENT,
            documents.CREATE_DESCRIPTION,
            documents.CREATE_SCHEMA,
            documents.create_document,
        ),
        ToolSpec(
            ToolName.UPDATE_DOCUMENT,
            documents.UPDATE_DESCRIPTION,
            documents.UPDATE_SCHEMA,
            documents.update_document,
        ),
        ToolSpec(
            ToolName.REQUEST_SUGGESTIONS,
            documents.SUGGESTIONS_DESCRIPTION,
            documents.SUGGESTIONS_SCHEMA,
            documents.request_suggestions,
        ),
    ]
}


def allowed_tools(names: list[str]) -> set[ToolName]:
    allowed = set()
    for name in names:
        tool = ToolName.parse(name)
        if tool is None:
            raise ValueError(f"Unknown tool in surface configuration: {name!r}")
        allowed.add(tool)
    return allowed


def declarations(allowed: set[ToolName]) -> list[dict]:
    """Anthropic tool declarations, in registry order."""
    return [spec.declaration() for name, spec in REGISTRY.items() if name in allowed]


async def execute_tool(call: ToolCallPart, allowed: set[ToolName], ctx: ToolContext) -> ToolResultPart:
    """Run one tool call. Never raises: failures become ``{"error": ...}``."""
    tool = ToolName.parse(call.tool_name)
    if tool is None or tool not in allowed:
        logger.warning(f"[tools] model requested unavailable tool {call.tool_name!r}")
        result = {"error": f"Tool {call.tool_name} is not available"}
        return ToolResultPart(call.tool_call_id, call.tool_name, result)

    spec = REGISTRY[tool]
    try:
        result = await spec.execute(call.args or {}, ctx)
    except Exception as e:
        logger.exception(f"[tools] {tool.value} failed")
        result = {"error": str(e) or type(e).__name__}

    return ToolResultPart(call.tool_call_id, call.tool_name, result)
