"""
Events & Markets Search
=======================
Time-frame windowing over the events table.

Event ``time`` values are ISO timestamps ("2025-04-19T20:00:00"), so a day
filter is a prefix match and a range filter is a plain string comparison.

A specific ``date`` overrides the time frame. Accepted forms:
    "19 April" / "April 19"   day + month name (current year)
    "saturday"                next occurrence, today included
    "21"                      day of the current month, next month if past
    "2025-04-19"              ISO date
"""
from __future__ import annotations

import calendar
import logging
import re
import sqlite3
from datetime import date, timedelta

import companion.database as database

logger = logging.getLogger(__name__)

TIME_FRAMES = ["today", "tomorrow", "this week", "this weekend", "next week", "this month"]

MARKET_CATEGORY = "market"

_MONTHS = {name.lower(): i for i, name in enumerate(calendar.month_name) if name}
_WEEKDAYS = {name.lower(): i for i, name in enumerate(calendar.day_name)}

_MONTH_RE = re.compile(r"\b(" + "|".join(_MONTHS) + r")\b", re.IGNORECASE)
_WEEKDAY_RE = re.compile(r"\b(" + "|".join(_WEEKDAYS) + r")\b", re.IGNORECASE)
_DAY_RE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)?\b")
_ISO_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")

EVENTS_DESCRIPTION = "Get upcoming events on Koh Phangan based on filters"

EVENTS_SCHEMA = {
    "type": "object",
    "properties": {
        "timeFrame": {
            "type": "string",
            "enum": TIME_FRAMES,
            "description": "Time period to search for events",
        },
        "date": {
            "type": "string",
            "description": 'Specific date such as "19 April", "saturday" or "21"',
        },
        "category": {"type": "string", "description": "Optional category filter"},
        "tags": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Optional tags to filter by (any match)",
        },
        "location": {"type": "string", "description": "Optional location filter"},
    },
    "required": ["timeFrame"],
}

MARKETS_DESCRIPTION = "Get night markets and food markets on Koh Phangan for a time period"

MARKETS_SCHEMA = {
    "type": "object",
    "properties": {
        "timeFrame": {
            "type": "string",
            "enum": TIME_FRAMES,
            "description": "Time period to search for markets",
        },
        "location": {"type": "string", "description": "Optional location filter"},
    },
    "required": ["timeFrame"],
}


# ---------------------------------------------------------------------------
# Date handling
# ---------------------------------------------------------------------------

def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _add_month(d: date) -> date | None:
    if d.month == 12:
        return _safe_date(d.year + 1, 1, d.day)
    return _safe_date(d.year, d.month + 1, d.day)


def resolve_date(text: str, today: date) -> date | None:
    """Turn a free-form date reference into a calendar day, or None."""
    if not text:
        return None

    iso = _ISO_RE.search(text)
    if iso:
        return _safe_date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))

    month = _MONTH_RE.search(text)
    day = _DAY_RE.search(text)

    if month:
        if not day:
            return None
        return _safe_date(today.year, _MONTHS[month.group(1).lower()], int(day.group(1)))

    if day:
        target = _safe_date(today.year, today.month, int(day.group(1)))
        if target is not None and target < today:
            target = _add_month(target)
        return target

    weekday = _WEEKDAY_RE.search(text)
    if weekday:
        delta = (_WEEKDAYS[weekday.group(1).lower()] - today.weekday()) % 7
        return today + timedelta(days=delta)

    return None


def time_frame_window(time_frame: str, today: date) -> dict:
    """search_events() filter kwargs for a named time frame."""
    if time_frame == "today":
        return {"dates": [today.isoformat()]}

    if time_frame == "tomorrow":
        return {"dates": [(today + timedelta(days=1)).isoformat()]}

    if time_frame == "this week":
        # From today through Sunday
        end = today + timedelta(days=7 - today.weekday())
        return {"start": today.isoformat(), "end": end.isoformat()}

    if time_frame == "this weekend":
        # On a Sunday the weekend already in progress counts
        saturday = today + timedelta(days=5 - today.weekday())
        if today.weekday() == 6:
            saturday = today - timedelta(days=1)
        sunday = saturday + timedelta(days=1)
        return {"dates": [saturday.isoformat(), sunday.isoformat()]}

    if time_frame == "next week":
        monday = today + timedelta(days=7 - today.weekday())
        return {"start": monday.isoformat(), "end": (monday + timedelta(days=7)).isoformat()}

    if time_frame == "this month":
        first = today.replace(day=1)
        if first.month == 12:
            following = first.replace(year=first.year + 1, month=1)
        else:
            following = first.replace(month=first.month + 1)
        return {"start": first.isoformat(), "end": following.isoformat()}

    raise ValueError(f"Unknown time frame: {time_frame!r}")


def _describe_day(d: date) -> str:
    return f"on {calendar.day_name[d.weekday()]}, {calendar.month_name[d.month]} {d.day}"


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def find_events(
    time_frame: str,
    date_text: str | None = None,
    category: str | None = None,
    tags: list[str] | None = None,
    location: str | None = None,
    today: date | None = None,
) -> dict:
    today = today or date.today()
    label = time_frame

    target = resolve_date(date_text, today) if date_text else None
    if target is not None:
        window = {"dates": [target.isoformat()]}
        label = _describe_day(target)
    else:
        if date_text:
            logger.info(f"[events] could not parse date {date_text!r}; using time frame {time_frame!r}")
        try:
            window = time_frame_window(time_frame, today)
        except ValueError as e:
            return {"error": str(e)}

    try:
        events = await database.search_events(
            category=category,
            tags=tags,
            location=location,
            **window,
        )
    except sqlite3.Error as e:
        logger.error(f"[events] query failed: {e}")
        return {"error": f"Database error: {e}"}

    logger.info(f"[events] {len(events)} events for {label!r}")
    return {"events": events, "count": len(events), "timeFrame": label}


async def get_events(args: dict, ctx) -> dict:
    return await find_events(
        args.get("timeFrame", "today"),
        date_text=args.get("date"),
        category=args.get("category"),
        tags=args.get("tags"),
        location=args.get("location"),
    )


async def get_markets(args: dict, ctx) -> dict:
    result = await find_events(
        args.get("timeFrame", "today"),
        category=MARKET_CATEGORY,
        location=args.get("location"),
    )
    if "error" in result:
        return result
    return {"markets": result["events"], "count": result["count"], "timeFrame": result["timeFrame"]}
