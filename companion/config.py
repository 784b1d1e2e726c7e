"""
Configuration: environment settings, model catalog and tool surfaces.

Every other module reads its settings from here. Values come from the
process environment (optionally populated from a project-root .env file).
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Repository root (parent of companion/)
REPO_ROOT = Path(__file__).parent.parent
load_dotenv(REPO_ROOT / ".env")


def _int_env(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
DATABASE_PATH = os.getenv("DATABASE_PATH", str(REPO_ROOT / "data" / "companion.db"))
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session_token")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Maximum number of model -> tool round-trips per submitted turn
MAX_STEPS = _int_env("MAX_STEPS", 5)
PERSIST_ATTEMPTS = _int_env("PERSIST_ATTEMPTS", 3)
MAX_TOKENS = _int_env("MAX_TOKENS", 4000, minimum=256)

WEATHER_API_URL = os.getenv("WEATHER_API_URL", "https://api.open-meteo.com/v1/forecast")
WEATHER_TIMEOUT_S = _int_env("WEATHER_TIMEOUT_S", 10)

# Island defaults for the weather lookup
DEFAULT_LATITUDE = 9.7313
DEFAULT_LONGITUDE = 100.0137

TITLE_MAX_CHARS = 50
DEFAULT_TITLE = "New conversation"


# ---------------------------------------------------------------------------
# Model catalog
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelConfig:
    """A model the client may select by id."""

    id: str
    label: str
    api_identifier: str
    description: str = ""


MODELS: list[ModelConfig] = [
    ModelConfig(
        id="sonnet-4.5",
        label="Claude Sonnet 4.5",
        api_identifier="claude-sonnet-4-5-20250929",
        description="Best for complex trip planning",
    ),
    ModelConfig(
        id="sonnet-4",
        label="Claude Sonnet 4",
        api_identifier="claude-sonnet-4-20250514",
        description="Balanced quality and speed",
    ),
    ModelConfig(
        id="haiku-3.5",
        label="Claude Haiku 3.5",
        api_identifier="claude-3-5-haiku-20241022",
        description="Fast answers for quick questions",
    ),
]

DEFAULT_MODEL_ID = os.getenv("DEFAULT_MODEL_ID", MODELS[0].id)


def find_model(model_id: str | None) -> ModelConfig | None:
    if not model_id:
        return None
    for model in MODELS:
        if model.id == model_id:
            return model
    return None


def default_model() -> ModelConfig:
    return find_model(DEFAULT_MODEL_ID) or MODELS[0]


# ---------------------------------------------------------------------------
# Tool surfaces
# ---------------------------------------------------------------------------
# Tool names per delivery surface. Native clients cannot render document
# blocks, so the generative document tools are web-only.

LOOKUP_TOOLS = [
    "getWeather",
    "getEvents",
    "getMarkets",
    "getActivitiesServices",
    "getGuides",
    "getPartners",
    "getItemDetails",
]
DOCUMENT_TOOLS = ["createDocument", "updateDocument", "requestSuggestions"]

SURFACE_TOOLS: dict[str, list[str]] = {
    "web": LOOKUP_TOOLS + DOCUMENT_TOOLS,
    "mobile": list(LOOKUP_TOOLS),
}
