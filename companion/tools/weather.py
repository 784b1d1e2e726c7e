"""
Weather lookup (Open-Meteo).
"""
from __future__ import annotations

import asyncio
import logging

import requests

from companion.config import (
    DEFAULT_LATITUDE,
    DEFAULT_LONGITUDE,
    WEATHER_API_URL,
    WEATHER_TIMEOUT_S,
)

logger = logging.getLogger(__name__)

DESCRIPTION = "Get the current weather at Koh Phangan"

INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "latitude": {
            "type": "number",
            "description": "Latitude for Koh Phangan",
            "default": DEFAULT_LATITUDE,
        },
        "longitude": {
            "type": "number",
            "description": "Longitude for Koh Phangan",
            "default": DEFAULT_LONGITUDE,
        },
    },
}

CURRENT_FIELDS = (
    "temperature_2m,relative_humidity_2m,precipitation,weather_code,"
    "cloud_cover,wind_speed_10m,wind_direction_10m"
)


def _fetch_forecast(latitude: float, longitude: float) -> dict:
    response = requests.get(
        WEATHER_API_URL,
        params={
            "latitude": latitude,
            "longitude": longitude,
            "current": CURRENT_FIELDS,
            "hourly": "temperature_2m,precipitation_probability",
            "daily": "sunrise,sunset,uv_index_max",
            "timezone": "auto",
        },
        timeout=WEATHER_TIMEOUT_S,
    )
    response.raise_for_status()
    return response.json()


async def get_weather(args: dict, ctx) -> dict:
    latitude = args.get("latitude", DEFAULT_LATITUDE)
    longitude = args.get("longitude", DEFAULT_LONGITUDE)

    try:
        return await asyncio.to_thread(_fetch_forecast, latitude, longitude)
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"[weather] lookup failed for ({latitude}, {longitude}): {e}")
        return {"error": f"Weather service unavailable: {e}"}
