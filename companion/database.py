from __future__ import annotations
"""
Phangan Companion: Database Layer
=================================
Async SQLite storage for conversations, turns, generated documents and
suggestions, plus the read-only island catalog (events, activities, services,
guides, partners) queried by the search tools.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Database path (set by main.py at startup)
# ---------------------------------------------------------------------------
_db_path: str = ""


def set_db_path(path: str):
    global _db_path
    _db_path = path


def _get_db_path() -> str:
    if not _db_path:
        raise RuntimeError("Database path not set. Call set_db_path() first.")
    return _db_path


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_or(value, default):
    if value is None or value == "":
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


class ConversationExistsError(Exception):
    """Raised when a conversation id is inserted twice."""

    def __init__(self, conversation_id: str):
        super().__init__("Chat ID already exists")
        self.conversation_id = conversation_id


class StoreAuthorizationError(Exception):
    """Raised when a scoped write targets a conversation owned by someone else."""


# ===========================================================================
# Initialization
# ===========================================================================

async def init_db():
    """Create tables if they don't exist."""
    Path(_get_db_path()).parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(_get_db_path()) as db:
        # --- Users & credentials ---
        await db.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Bearer tokens (mobile) and session cookies (web) share one table
        await db.execute("""
            CREATE TABLE IF NOT EXISTS auth_sessions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id),
                kind TEXT NOT NULL DEFAULT 'bearer',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                expires_at TIMESTAMP NOT NULL
            )
        """)

        # --- Conversations ---
        await db.execute("""
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS turns (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL REFERENCES conversations(id),
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # --- Generated documents & suggestions ---
        await db.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                content TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS suggestions (
                id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL REFERENCES documents(id),
                document_created_at TIMESTAMP NOT NULL,
                original_text TEXT NOT NULL,
                suggested_text TEXT NOT NULL,
                description TEXT,
                is_resolved BOOLEAN DEFAULT FALSE,
                user_id TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # --- Island catalog (maintained by the admin dashboards) ---
        await db.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                category TEXT,
                time TEXT,
                day INTEGER,
                location TEXT,
                price TEXT,
                description TEXT,
                image TEXT,
                rating REAL,
                reviews INTEGER,
                tags TEXT,
                coordinates TEXT,
                organizer TEXT,
                duration TEXT,
                recurrence_pattern TEXT,
                recurrence_custom_pattern TEXT,
                recurrence_end_date TEXT,
                capacity INTEGER,
                attendee_count INTEGER,
                facilities TEXT,
                tickets TEXT
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS base_items (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                type TEXT NOT NULL,
                short_description TEXT,
                long_description TEXT,
                main_image TEXT,
                address TEXT,
                coordinates TEXT,
                area TEXT,
                hours TEXT,
                rating REAL,
                tags TEXT,
                price_range TEXT,
                is_featured BOOLEAN DEFAULT FALSE,
                is_sponsored BOOLEAN DEFAULT FALSE,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS activities (
                id TEXT PRIMARY KEY REFERENCES base_items(id),
                category TEXT,
                subcategory TEXT,
                activity_data TEXT
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS services (
                id TEXT PRIMARY KEY REFERENCES base_items(id),
                category TEXT,
                subcategory TEXT,
                service_data TEXT
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS guides (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                category TEXT,
                description TEXT,
                location TEXT,
                tags TEXT,
                sections TEXT,
                practical_info TEXT,
                is_featured BOOLEAN DEFAULT FALSE,
                last_updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS partners (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                subcategory TEXT,
                location TEXT,
                description TEXT,
                tags TEXT,
                features TEXT,
                contact TEXT,
                rating REAL,
                is_featured BOOLEAN DEFAULT FALSE
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS llm_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT,
                phase TEXT,
                model TEXT,
                input_tokens INTEGER,
                output_tokens INTEGER,
                estimated_cost_usd REAL,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)

        await db.commit()


# ===========================================================================
# LLM Usage Tracking
# ===========================================================================

# Approximate costs per 1M tokens (USD); update when pricing changes
_MODEL_COSTS = {
    "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0},
    "claude-sonnet-4-5-20250929": {"input": 3.0, "output": 15.0},
    "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.0},
}


async def log_llm_usage(
    response_usage,
    model: str,
    phase: str,
    conversation_id: str | None = None,
) -> None:
    """Persist a single LLM call's token usage.

    Args:
        response_usage: The ``response.usage`` object from the Anthropic SDK.
        model: Model identifier string.
        phase: One of 'chat', 'document', 'suggestions', 'other'.
    """
    input_tokens = getattr(response_usage, "input_tokens", 0) or 0
    output_tokens = getattr(response_usage, "output_tokens", 0) or 0

    costs = _MODEL_COSTS.get(model, {"input": 3.0, "output": 15.0})
    estimated_cost = (input_tokens * costs["input"] + output_tokens * costs["output"]) / 1_000_000

    try:
        async with aiosqlite.connect(_get_db_path()) as db:
            await db.execute(
                """INSERT INTO llm_usage
                   (conversation_id, phase, model, input_tokens, output_tokens, estimated_cost_usd)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (conversation_id, phase, model, input_tokens, output_tokens, estimated_cost),
            )
            await db.commit()
    except Exception as e:
        logger.warning(f"[database] llm_usage write skipped: {e}")


# ===========================================================================
# Users & Authentication
# ===========================================================================

async def create_user(email: str) -> dict:
    """Create a user row. Identity issuance itself lives outside this service."""
    user_id = str(uuid.uuid4())
    now = _now()

    async with aiosqlite.connect(_get_db_path()) as db:
        await db.execute(
            "INSERT INTO users (id, email, created_at) VALUES (?, ?, ?)",
            (user_id, email, now),
        )
        await db.commit()

    return {"id": user_id, "email": email, "created_at": now}


async def create_auth_session(user_id: str, expires_at: str, kind: str = "bearer") -> str:
    """Create a bearer-token or cookie session. Returns the token (which is the row ID)."""
    token = str(uuid.uuid4())
    now = _now()

    async with aiosqlite.connect(_get_db_path()) as db:
        await db.execute(
            """
            INSERT INTO auth_sessions (id, user_id, kind, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (token, user_id, kind, now, expires_at),
        )
        await db.commit()

    return token


async def get_user_by_token(token: str, kind: str | None = None) -> dict | None:
    """Look up a user by their session token. Returns None if invalid/expired."""
    now = _now()
    query = """
        SELECT u.* FROM auth_sessions s
        JOIN users u ON s.user_id = u.id
        WHERE s.id = ? AND s.expires_at > ?
    """
    params: list = [token, now]
    if kind is not None:
        query += " AND s.kind = ?"
        params.append(kind)

    async with aiosqlite.connect(_get_db_path()) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(query, params)
        row = await cursor.fetchone()

    if row is None:
        return None

    return {
        "id": row["id"],
        "email": row["email"],
        "created_at": row["created_at"],
    }


# ===========================================================================
# Conversations
# ===========================================================================

def _conversation_dict(row) -> dict:
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "title": row["title"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


async def create_conversation(conversation_id: str, user_id: str, title: str) -> dict:
    """Insert a conversation. Raises ConversationExistsError if the id is taken."""
    now = _now()

    async with aiosqlite.connect(_get_db_path()) as db:
        try:
            await db.execute(
                """
                INSERT INTO conversations (id, user_id, title, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (conversation_id, user_id, title, now, now),
            )
        except sqlite3.IntegrityError as e:
            raise ConversationExistsError(conversation_id) from e
        await db.commit()

    return {
        "id": conversation_id,
        "user_id": user_id,
        "title": title,
        "created_at": now,
        "updated_at": now,
    }


async def get_conversation(conversation_id: str) -> dict | None:
    async with aiosqlite.connect(_get_db_path()) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM conversations WHERE id = ?",
            (conversation_id,),
        )
        row = await cursor.fetchone()

    if row is None:
        return None
    return _conversation_dict(row)


async def get_user_conversations(user_id: str, order_by: str = "created_at") -> list[dict]:
    """All conversations owned by a user, newest first."""
    if order_by not in ("created_at", "updated_at"):
        raise ValueError(f"Unsupported ordering: {order_by}")

    async with aiosqlite.connect(_get_db_path()) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            f"""
            SELECT * FROM conversations
            WHERE user_id = ?
            ORDER BY {order_by} DESC, rowid DESC
            """,
            (user_id,),
        )
        rows = await cursor.fetchall()

    return [_conversation_dict(row) for row in rows]


async def delete_conversation(conversation_id: str, owner_id: str | None = None) -> bool:
    """Delete a conversation and all its turns.

    With ``owner_id`` the delete only applies to a conversation that user owns.
    """
    async with aiosqlite.connect(_get_db_path()) as db:
        if owner_id is not None:
            cursor = await db.execute(
                "SELECT user_id FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return False
            if row[0] != owner_id:
                raise StoreAuthorizationError(
                    f"Conversation {conversation_id} is not owned by {owner_id}"
                )

        await db.execute(
            "DELETE FROM turns WHERE conversation_id = ?",
            (conversation_id,),
        )
        cursor = await db.execute(
            "DELETE FROM conversations WHERE id = ?",
            (conversation_id,),
        )
        await db.commit()
        return cursor.rowcount > 0


# ===========================================================================
# Turns
# ===========================================================================

async def save_turns(
    conversation_id: str,
    turns: list[dict],
    owner_id: str | None = None,
) -> list[dict]:
    """Insert turn rows ``{id, role, content, created_at?}`` in order.

    With ``owner_id`` the write is refused unless that user owns the
    conversation.
    """
    if not turns:
        return []

    now = _now()
    rows = [
        {
            "id": turn.get("id") or str(uuid.uuid4()),
            "conversation_id": conversation_id,
            "role": turn["role"],
            "content": turn["content"],
            "created_at": turn.get("created_at") or now,
        }
        for turn in turns
    ]

    async with aiosqlite.connect(_get_db_path()) as db:
        if owner_id is not None:
            cursor = await db.execute(
                "SELECT user_id FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            if row is None or row[0] != owner_id:
                raise StoreAuthorizationError(
                    f"Conversation {conversation_id} is not writable by {owner_id}"
                )

        await db.executemany(
            """
            INSERT INTO turns (id, conversation_id, role, content, created_at)
            VALUES (:id, :conversation_id, :role, :content, :created_at)
            """,
            rows,
        )
        await db.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (now, conversation_id),
        )
        await db.commit()

    return rows


async def get_turns(conversation_id: str) -> list[dict]:
    """All turns of a conversation, oldest first."""
    async with aiosqlite.connect(_get_db_path()) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            """
            SELECT * FROM turns
            WHERE conversation_id = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            (conversation_id,),
        )
        rows = await cursor.fetchall()

    return [
        {
            "id": row["id"],
            "conversation_id": row["conversation_id"],
            "role": row["role"],
            "content": row["content"],
            "created_at": row["created_at"],
        }
        for row in rows
    ]


# ===========================================================================
# Documents & Suggestions
# ===========================================================================

async def save_document(document_id: str, title: str, content: str, user_id: str) -> dict:
    now = _now()

    async with aiosqlite.connect(_get_db_path()) as db:
        await db.execute(
            """
            INSERT INTO documents (id, user_id, title, content, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (document_id, user_id, title, content, now, now),
        )
        await db.commit()

    return {
        "id": document_id,
        "user_id": user_id,
        "title": title,
        "content": content,
        "created_at": now,
        "updated_at": now,
    }


async def update_document_content(document_id: str, content: str) -> bool:
    """Rewrite a document's content in place. Ownership never changes."""
    async with aiosqlite.connect(_get_db_path()) as db:
        cursor = await db.execute(
            "UPDATE documents SET content = ?, updated_at = ? WHERE id = ?",
            (content, _now(), document_id),
        )
        await db.commit()
        return cursor.rowcount > 0


async def get_document(document_id: str) -> dict | None:
    async with aiosqlite.connect(_get_db_path()) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM documents WHERE id = ?",
            (document_id,),
        )
        row = await cursor.fetchone()

    if row is None:
        return None

    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "title": row["title"],
        "content": row["content"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


async def save_suggestions(suggestions: list[dict]) -> int:
    """Insert one suggestion batch. Returns the number of rows written."""
    if not suggestions:
        return 0

    now = _now()
    rows = [
        (
            s["id"],
            s["document_id"],
            s["document_created_at"],
            s["original_text"],
            s["suggested_text"],
            s.get("description"),
            bool(s.get("is_resolved", False)),
            s["user_id"],
            now,
        )
        for s in suggestions
    ]

    async with aiosqlite.connect(_get_db_path()) as db:
        await db.executemany(
            """
            INSERT INTO suggestions
                (id, document_id, document_created_at, original_text, suggested_text,
                 description, is_resolved, user_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        await db.commit()

    return len(rows)


async def get_suggestions(document_id: str) -> list[dict]:
    async with aiosqlite.connect(_get_db_path()) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM suggestions WHERE document_id = ? ORDER BY created_at ASC, rowid ASC",
            (document_id,),
        )
        rows = await cursor.fetchall()

    return [
        {
            "id": row["id"],
            "document_id": row["document_id"],
            "document_created_at": row["document_created_at"],
            "original_text": row["original_text"],
            "suggested_text": row["suggested_text"],
            "description": row["description"],
            "is_resolved": bool(row["is_resolved"]),
            "user_id": row["user_id"],
            "created_at": row["created_at"],
        }
        for row in rows
    ]


# ===========================================================================
# Island Catalog (read-only queries for the search tools)
# ===========================================================================

def _any_tag_clause(column: str, tags: list[str], params: list) -> str:
    """SQL fragment matching rows whose JSON tag array holds ANY of ``tags``."""
    parts = []
    for tag in tags:
        parts.append(
            f"EXISTS (SELECT 1 FROM json_each({column}) WHERE lower(json_each.value) = lower(?))"
        )
        params.append(tag)
    return "(" + " OR ".join(parts) + ")"


async def search_events(
    dates: list[str] | None = None,
    start: str | None = None,
    end: str | None = None,
    category: str | None = None,
    tags: list[str] | None = None,
    location: str | None = None,
) -> list[dict]:
    """Filter events by calendar days (``dates``) or a [start, end) range.

    Results are sorted by weekday then start time.
    """
    clauses: list[str] = []
    params: list = []

    if dates:
        clauses.append("(" + " OR ".join("e.time LIKE ?" for _ in dates) + ")")
        params.extend(f"{d}%" for d in dates)
    if start:
        clauses.append("e.time >= ?")
        params.append(start)
    if end:
        clauses.append("e.time < ?")
        params.append(end)
    if category:
        clauses.append("e.category LIKE ?")
        params.append(f"%{category}%")
    if tags:
        clauses.append(_any_tag_clause("e.tags", tags, params))
    if location:
        clauses.append("e.location LIKE ?")
        params.append(f"%{location}%")

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    async with aiosqlite.connect(_get_db_path()) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            f"SELECT e.* FROM events e {where} ORDER BY e.day ASC, e.time ASC",
            params,
        )
        rows = await cursor.fetchall()

    return [
        {
            "id": row["id"],
            "title": row["title"],
            "category": row["category"],
            "time": row["time"],
            "location": row["location"],
            "price": row["price"],
            "description": row["description"],
            "image": row["image"],
            "rating": row["rating"],
            "reviews": row["reviews"],
            "tags": _json_or(row["tags"], []),
            "coordinates": _json_or(row["coordinates"], None),
            "day": row["day"],
            "organizer": row["organizer"],
            "duration": row["duration"],
            "recurrence": {
                "pattern": row["recurrence_pattern"],
                "customPattern": row["recurrence_custom_pattern"],
                "endDate": row["recurrence_end_date"],
            },
            "capacity": row["capacity"],
            "attendeeCount": row["attendee_count"],
            "facilities": _json_or(row["facilities"], None),
            "tickets": _json_or(row["tickets"], None),
        }
        for row in rows
    ]


def _item_dict(row, detail_key: str) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "type": row["type"],
        "category": row["category"],
        "subcategory": row["subcategory"],
        "mainImage": row["main_image"],
        "shortDescription": row["short_description"],
        "longDescription": row["long_description"],
        "address": row["address"],
        "area": row["area"],
        "coordinates": _json_or(row["coordinates"], None),
        "rating": row["rating"],
        "tags": _json_or(row["tags"], []),
        "priceRange": row["price_range"],
        "isFeatured": bool(row["is_featured"]),
        "isSponsored": bool(row["is_sponsored"]),
        "hours": _json_or(row["hours"], None),
        detail_key: _json_or(row["details"], {}),
    }


_ITEM_DETAIL_TABLES = {
    "activity": ("activities", "activity_data", "activityData"),
    "service": ("services", "service_data", "serviceData"),
}


async def search_items(
    item_type: str,
    category: str | None = None,
    area: str | None = None,
    search: str | None = None,
    tags: list[str] | None = None,
    price_range: str | None = None,
    featured_only: bool = False,
    limit: int = 5,
) -> list[dict]:
    """Search activities or services (base item joined with its detail row)."""
    table, data_column, detail_key = _ITEM_DETAIL_TABLES[item_type]

    clauses = ["b.type = ?"]
    params: list = [item_type]

    if search:
        clauses.append(
            "(b.name LIKE ? OR b.short_description LIKE ? OR b.long_description LIKE ?)"
        )
        params.extend([f"%{search}%"] * 3)
    if area:
        clauses.append("b.area LIKE ?")
        params.append(f"%{area}%")
    if price_range:
        clauses.append("b.price_range = ?")
        params.append(price_range)
    if featured_only:
        clauses.append("b.is_featured = TRUE")
    if tags:
        clauses.append(_any_tag_clause("b.tags", tags, params))
    if category:
        clauses.append("d.category = ?")
        params.append(category)
    params.append(limit)

    async with aiosqlite.connect(_get_db_path()) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            f"""
            SELECT b.*, d.category, d.subcategory, d.{data_column} AS details
            FROM base_items b
            JOIN {table} d ON d.id = b.id
            WHERE {' AND '.join(clauses)}
            ORDER BY b.is_sponsored DESC, b.is_featured DESC, b.rating DESC
            LIMIT ?
            """,
            params,
        )
        rows = await cursor.fetchall()

    return [_item_dict(row, detail_key) for row in rows]


async def get_item(item_id: str) -> dict | None:
    """Full detail for one activity or service."""
    async with aiosqlite.connect(_get_db_path()) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute("SELECT type FROM base_items WHERE id = ?", (item_id,))
        row = await cursor.fetchone()
        if row is None or row["type"] not in _ITEM_DETAIL_TABLES:
            return None

        table, data_column, detail_key = _ITEM_DETAIL_TABLES[row["type"]]
        cursor = await db.execute(
            f"""
            SELECT b.*, d.category, d.subcategory, d.{data_column} AS details
            FROM base_items b
            LEFT JOIN {table} d ON d.id = b.id
            WHERE b.id = ?
            """,
            (item_id,),
        )
        row = await cursor.fetchone()

    if row is None:
        return None
    return _item_dict(row, detail_key)


async def search_guides(
    title: str | None = None,
    category: str | None = None,
    location: str | None = None,
    tags: list[str] | None = None,
    limit: int = 5,
) -> tuple[list[dict], int]:
    """Search guides; ALL given tags must match. Returns (guides, total matches)."""
    clauses: list[str] = []
    params: list = []

    if title:
        clauses.append(
            "(g.name LIKE ? OR json_extract(g.description, '$.short') LIKE ? "
            "OR json_extract(g.description, '$.long') LIKE ?)"
        )
        params.extend([f"%{title}%"] * 3)
    if category:
        clauses.append("g.category = ?")
        params.append(category)
    if location:
        clauses.append("json_extract(g.location, '$.area') LIKE ?")
        params.append(f"%{location}%")
    for tag in tags or []:
        clauses.append(
            "EXISTS (SELECT 1 FROM json_each(g.tags) WHERE lower(json_each.value) = lower(?))"
        )
        params.append(tag)

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    async with aiosqlite.connect(_get_db_path()) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(f"SELECT COUNT(*) FROM guides g {where}", params)
        total = (await cursor.fetchone())[0]
        cursor = await db.execute(
            f"""
            SELECT g.* FROM guides g {where}
            ORDER BY g.is_featured DESC, g.last_updated_at DESC
            LIMIT ?
            """,
            params + [limit],
        )
        rows = await cursor.fetchall()

    guides = [
        {
            "id": row["id"],
            "name": row["name"],
            "category": row["category"],
            "description": _json_or(row["description"], {"short": "", "long": ""}),
            "location": _json_or(row["location"], {"address": ""}),
            "tags": _json_or(row["tags"], []),
            "sections": _json_or(row["sections"], []),
            "practicalInfo": _json_or(row["practical_info"], {}),
            "isFeatured": bool(row["is_featured"]),
            "lastUpdatedAt": row["last_updated_at"],
        }
        for row in rows
    ]
    return guides, total


async def search_partners(
    name: str | None = None,
    subcategory: str | None = None,
    location: str | None = None,
    tags: list[str] | None = None,
    limit: int = 10,
) -> tuple[list[dict], int]:
    """Search partner businesses. Returns (partners, total matches)."""
    clauses: list[str] = []
    params: list = []

    if name:
        clauses.append("p.name LIKE ?")
        params.append(f"%{name}%")
    if subcategory:
        clauses.append("p.subcategory = ?")
        params.append(subcategory)
    if location:
        clauses.append("p.location LIKE ?")
        params.append(f"%{location}%")
    if tags:
        tag_params: list = []
        tag_clause = _any_tag_clause("p.tags", tags, tag_params)
        feature_clause = _any_tag_clause("p.features", tags, tag_params)
        clauses.append(f"({tag_clause} OR {feature_clause})")
        params.extend(tag_params)

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    async with aiosqlite.connect(_get_db_path()) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(f"SELECT COUNT(*) FROM partners p {where}", params)
        total = (await cursor.fetchone())[0]
        cursor = await db.execute(
            f"""
            SELECT p.* FROM partners p {where}
            ORDER BY p.is_featured DESC, p.rating DESC
            LIMIT ?
            """,
            params + [limit],
        )
        rows = await cursor.fetchall()

    partners = [
        {
            "id": row["id"],
            "name": row["name"],
            "subcategory": row["subcategory"],
            "location": row["location"],
            "description": row["description"],
            "tags": _json_or(row["tags"], []),
            "features": _json_or(row["features"], []),
            "contact": _json_or(row["contact"], {}),
            "rating": row["rating"],
            "isFeatured": bool(row["is_featured"]),
        }
        for row in rows
    ]
    return partners, total
