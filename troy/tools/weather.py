"""get_weather: current conditions and a 5-day forecast from Open-Meteo.

No API key needed. Uses the tool httpx client (no model credentials).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from troy.agent.dispatch import ToolRegistry

logger = logging.getLogger(__name__)

_GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
_FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

# WMO weather interpretation codes
_WEATHER_CODES: dict[int, str] = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Foggy",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    56: "Light freezing drizzle",
    57: "Dense freezing drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    66: "Light freezing rain",
    67: "Heavy freezing rain",
    71: "Slight snow fall",
    73: "Moderate snow fall",
    75: "Heavy snow fall",
    77: "Snow grains",
    80: "Slight rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    85: "Slight snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with slight hail",
    99: "Thunderstorm with heavy hail",
}


def describe_weather_code(code: int) -> str:
    return _WEATHER_CODES.get(code, "Unknown")


async def _geocode(http: httpx.AsyncClient, location: str) -> dict[str, Any] | None:
    response = await http.get(
        _GEOCODING_URL,
        params={"name": location, "count": 1, "language": "en"},
        timeout=10,
    )
    response.raise_for_status()
    results = response.json().get("results") or []
    return results[0] if results else None


async def fetch_weather(http: httpx.AsyncClient, location: str) -> str:
    """Geocode `location` and format its current weather and forecast."""
    logger.info("Fetching weather for: %s", location)
    geo = await _geocode(http, location)
    if geo is None:
        logger.warning("Geocoding failed for: %s", location)
        return f"Could not find location: {location}"

    response = await http.get(
        _FORECAST_URL,
        params={
            "latitude": geo["latitude"],
            "longitude": geo["longitude"],
            "current": "temperature_2m,relative_humidity_2m,weather_code,wind_speed_10m",
            "daily": "weather_code,temperature_2m_max,temperature_2m_min,precipitation_probability_max",
            "forecast_days": 5,
            "timezone": "auto",
        },
        timeout=10,
    )
    response.raise_for_status()
    data = response.json()

    current = data["current"]
    current_units = data["current_units"]
    daily = data["daily"]
    daily_units = data["daily_units"]

    lines = [
        f"Weather for {geo.get('name', location)}, {geo.get('country', '')}:",
        "",
        "Current conditions:",
        f"- {describe_weather_code(current['weather_code'])}",
        f"- Temperature: {current['temperature_2m']}{current_units['temperature_2m']}",
        f"- Humidity: {current['relative_humidity_2m']}{current_units['relative_humidity_2m']}",
        f"- Wind speed: {current['wind_speed_10m']}{current_units['wind_speed_10m']}",
        "",
        "5-day forecast:",
    ]
    for i, day in enumerate(daily["time"]):
        lines.append(
            f"- {day}: {describe_weather_code(daily['weather_code'][i])}, "
            f"{daily['temperature_2m_min'][i]}–{daily['temperature_2m_max'][i]}"
            f"{daily_units['temperature_2m_max']}, "
            f"precipitation {daily['precipitation_probability_max'][i]}"
            f"{daily_units['precipitation_probability_max']}"
        )
    return "\n".join(lines) + "\n"


_WEATHER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Get the current weather conditions and a 5-day forecast for a location. "
        "Use this when the user asks about weather, temperature, or forecasts."
    ),
    "properties": {
        "location": {
            "type": "string",
            "description": "The city or location name, e.g. 'London', 'New York', 'Tokyo'",
        },
    },
    "required": ["location"],
}


def register_weather_tools(registry: ToolRegistry, http_client: httpx.AsyncClient) -> None:
    """Register get_weather. Read-only, so it is offered to both registries."""

    async def _weather(location: str) -> str:
        return await fetch_weather(http_client, location)

    registry.register("get_weather", _weather, _WEATHER_SCHEMA, read_only=True)
