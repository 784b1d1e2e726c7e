"""
Explore Search
==============
Activities, services, item details, guides and partners.

Every query failure comes back as ``{"error": ...}`` so the model can explain
it to the visitor instead of the turn failing.
"""
from __future__ import annotations

import logging
import sqlite3

import companion.database as database

logger = logging.getLogger(__name__)

ITEM_TYPES = ["activity", "service", "both"]
GUIDE_CATEGORIES = ["culture", "health", "mobility", "real_estate", "wellness"]

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

ACTIVITIES_DESCRIPTION = "Search for activities and services on Koh Phangan with various filters"

ACTIVITIES_SCHEMA = {
    "type": "object",
    "properties": {
        "type": {
            "type": "string",
            "enum": ITEM_TYPES,
            "description": "Type of items to search for: activity, service, or both",
        },
        "category": {
            "type": "string",
            "description": 'Optional category filter (e.g. "food_drink" for activities or "accommodation" for services)',
        },
        "area": {"type": "string", "description": 'Optional area filter (e.g. "Thong Sala", "Srithanu")'},
        "search": {"type": "string", "description": "Optional text to search in names and descriptions"},
        "tags": {**_STRING_LIST, "description": "Optional tags to filter by"},
        "priceRange": {"type": "string", "description": 'Optional price range ("budget", "mid-range", "luxury")'},
        "featuredOnly": {"type": "boolean", "description": "If true, return only featured items"},
        "limit": {"type": "integer", "default": 5, "description": "Maximum number of results per type"},
    },
    "required": ["type"],
}

ITEM_DETAILS_DESCRIPTION = "Get full details for one activity or service by id"

ITEM_DETAILS_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "description": "The activity or service id"},
    },
    "required": ["id"],
}

GUIDES_DESCRIPTION = (
    "Search for guides on various topics (Culture, Health, Mobility, Real Estate, Wellness) "
    "based on filters like title, category, location area, or tags."
)

GUIDES_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "description": "Keywords from the title or description of the guide"},
        "category": {"type": "string", "enum": GUIDE_CATEGORIES, "description": "Guide category"},
        "location": {"type": "string", "description": "General location area (e.g. North, South)"},
        "tags": {**_STRING_LIST, "description": "Tags the guide must all carry (e.g. visa, yoga, beach)"},
        "limit": {"type": "integer", "default": 5, "description": "Maximum number of guides to return"},
    },
}

PARTNERS_DESCRIPTION = (
    "Get partners (businesses, services, etc.) based on filters like name, subcategory, "
    "location, or tags/features offered."
)

PARTNERS_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Name of the partner (partial match allowed)"},
        "subcategory": {"type": "string", "description": "Partner subcategory (e.g. restaurant, spa, scooter_rental)"},
        "location": {"type": "string", "description": "Location, address or neighborhood"},
        "tags": {**_STRING_LIST, "description": "Services, features or keywords (e.g. vegan, wifi)"},
        "limit": {"type": "integer", "default": 10, "description": "Maximum number of partners to return"},
    },
}


def _limit(value, default: int) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return default
    return limit if limit > 0 else default


async def get_activities_services(args: dict, ctx) -> dict:
    item_type = args.get("type", "both")
    if item_type not in ITEM_TYPES:
        return {"error": f"Unknown item type: {item_type!r}"}

    filters = {
        "category": args.get("category"),
        "area": args.get("area"),
        "search": args.get("search"),
        "tags": args.get("tags"),
        "price_range": args.get("priceRange"),
        "featured_only": bool(args.get("featuredOnly")),
        "limit": _limit(args.get("limit"), 5),
    }

    result: dict = {"count": 0}
    try:
        if item_type in ("activity", "both"):
            result["activities"] = await database.search_items("activity", **filters)
            result["count"] += len(result["activities"])
        if item_type in ("service", "both"):
            result["services"] = await database.search_items("service", **filters)
            result["count"] += len(result["services"])
    except sqlite3.Error as e:
        logger.error(f"[explore] activities/services query failed: {e}")
        return {"error": f"Database error: {e}"}

    result["searchParams"] = {
        "type": item_type,
        "category": filters["category"],
        "area": filters["area"],
        "search": filters["search"],
        "tags": filters["tags"],
        "priceRange": filters["price_range"],
        "featuredOnly": filters["featured_only"],
    }
    logger.info(f"[explore] {result['count']} {item_type} results")
    return result


async def get_item_details(args: dict, ctx) -> dict:
    item_id = args.get("id")
    if not item_id:
        return {"error": "Item not found"}
    try:
        item = await database.get_item(item_id)
    except sqlite3.Error as e:
        logger.error(f"[explore] item lookup failed: {e}")
        return {"error": f"Database error: {e}"}
    if item is None:
        return {"error": "Item not found"}
    return {"item": item}


async def get_guides(args: dict, ctx) -> dict:
    try:
        guides, total = await database.search_guides(
            title=args.get("title"),
            category=args.get("category"),
            location=args.get("location"),
            tags=args.get("tags"),
            limit=_limit(args.get("limit"), 5),
        )
    except sqlite3.Error as e:
        logger.error(f"[explore] guides query failed: {e}")
        return {"error": f"Database error: {e}"}
    return {"guides": guides, "count": total}


async def get_partners(args: dict, ctx) -> dict:
    try:
        partners, total = await database.search_partners(
            name=args.get("name"),
            subcategory=args.get("subcategory"),
            location=args.get("location"),
            tags=args.get("tags"),
            limit=_limit(args.get("limit"), 10),
        )
    except sqlite3.Error as e:
        logger.error(f"[explore] partners query failed: {e}")
        return {"error": f"Database error: {e}"}
    return {"partners": partners, "count": total}
