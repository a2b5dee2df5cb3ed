"""
Current weather from Open-Meteo.

Place names are resolved with the Open-Meteo geocoding API; coordinates
are used directly. Neither service needs an API key.
"""

import logging
from typing import Any

import httpx

from palagent.primitives import ArgumentError, PrimitiveError

logger = logging.getLogger(__name__)

FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"

# WMO weather interpretation codes
WEATHER_CODES = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Foggy",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    71: "Slight snow",
    73: "Moderate snow",
    75: "Heavy snow",
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

UNIT_SYMBOLS = {"fahrenheit": "°F", "celsius": "°C"}


def describe_code(code: int | None) -> str:
    return WEATHER_CODES.get(code, "Unknown") if code is not None else "Unknown"


class WeatherClient:
    """Small synchronous client for the two Open-Meteo endpoints."""

    def __init__(self, http_client: httpx.Client | None = None, timeout: float = 15.0) -> None:
        self._http = http_client
        self.timeout = timeout

    def _get(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        client = self._http or httpx.Client(timeout=self.timeout)
        try:
            response = client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.warning(f"Weather request to {url} failed: {e}")
            raise PrimitiveError("Weather service unavailable") from e
        except ValueError as e:
            raise PrimitiveError(f"Weather service returned invalid JSON: {e}") from e
        finally:
            if self._http is None:
                client.close()

    def geocode(self, place: str) -> tuple[float, float, str]:
        """(latitude, longitude, display name) for the best match of place."""
        data = self._get(GEOCODING_URL, {"name": place, "count": 1, "language": "en", "format": "json"})
        results = data.get("results") or []
        if not results:
            raise ArgumentError(f"Could not find a place called '{place}'")
        match = results[0]
        parts = [match.get("name"), match.get("admin1"), match.get("country")]
        name = ", ".join(p for p in parts if p)
        return float(match["latitude"]), float(match["longitude"]), name or place

    def current(
        self,
        latitude: float,
        longitude: float,
        units: str = "fahrenheit",
        label: str | None = None,
    ) -> dict[str, Any]:
        if units not in UNIT_SYMBOLS:
            raise ArgumentError(f"Unknown temperature unit: {units}")
        data = self._get(FORECAST_URL, {
            "latitude": latitude,
            "longitude": longitude,
            "current": "temperature_2m,weathercode,windspeed_10m",
            "temperature_unit": units,
        })
        current = data.get("current") or {}
        if current.get("temperature_2m") is None:
            raise PrimitiveError("Weather service returned no current conditions")
        return {
            "temperature": round(current["temperature_2m"]),
            "unit": UNIT_SYMBOLS[units],
            "condition": describe_code(current.get("weathercode")),
            "wind_speed": round(current.get("windspeed_10m") or 0),
            "location": label or f"{latitude:.2f}, {longitude:.2f}",
        }

    def for_place(self, place: str, units: str = "fahrenheit") -> dict[str, Any]:
        latitude, longitude, name = self.geocode(place)
        return self.current(latitude, longitude, units, label=name)
