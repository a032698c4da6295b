"""Best-effort lookups against the public geo services.

Both fetchers swallow their own failures: a missing address or forecast must
never block an analysis, so callers only ever see ``None``.
"""

from typing import Any, Dict, Optional
import logging
import time

import httpx

from .config import CONFIG
from .models import Coordinate
from .trace import log_tool_call


async def fetch_reverse_geocode(client: httpx.AsyncClient, coord: Coordinate) -> Optional[Dict[str, Any]]:
    start_time = time.monotonic()
    params = {
        "format": "jsonv2",
        "lat": coord.lat,
        "lon": coord.lng,
    }
    headers = {"User-Agent": CONFIG.user_agent}
    http_status: Optional[int] = None
    try:
        resp = await client.get(f"{CONFIG.nominatim_base}/reverse", params=params, headers=headers)
        http_status = resp.status_code
        if resp.status_code != 200:
            raise ValueError(f"Nominatim error: {resp.status_code}")
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logging.error("Geocoding error: %s", e)
        log_tool_call("geo", "reverse_geocode", start_time, ok=False, http_status=http_status, level=logging.WARNING)
        return None

    log_tool_call("geo", "reverse_geocode", start_time, ok=True, http_status=http_status)
    return data if isinstance(data, dict) else None


async def fetch_weather_and_elevation(client: httpx.AsyncClient, coord: Coordinate) -> Optional[Dict[str, Any]]:
    start_time = time.monotonic()
    # Open-Meteo reports elevation in the root object of every forecast
    params = {
        "latitude": coord.lat,
        "longitude": coord.lng,
        "current": "temperature_2m,weather_code",
    }
    http_status: Optional[int] = None
    try:
        resp = await client.get(CONFIG.open_meteo_base, params=params)
        http_status = resp.status_code
        if resp.status_code != 200:
            raise ValueError(f"Meteo fetch failed: {resp.status_code} {resp.text[:200]}")
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logging.error("Weather error: %s", e)
        log_tool_call("weather", "current", start_time, ok=False, http_status=http_status, level=logging.WARNING)
        return None

    log_tool_call("weather", "current", start_time, ok=True, http_status=http_status)
    return data if isinstance(data, dict) else None
