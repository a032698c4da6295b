from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
import asyncio
import logging

import httpx

from .config import CONFIG
from .models import Coordinate, RawGeoContext
from .overpass import fetch_nearby_pois
from .sources import fetch_reverse_geocode, fetch_weather_and_elevation


MAX_CONTEXT_POIS = 50


def assemble_context(
    reverse_geocode: Optional[Dict[str, Any]],
    weather: Optional[Dict[str, Any]],
    pois: Optional[Sequence[Dict[str, Any]]],
    *,
    now: Optional[datetime] = None,
    limit: int = CONFIG.poi_context_limit,
) -> RawGeoContext:
    """Merge the fetch results into one context bundle, capping the POI volume."""
    stamp = now or datetime.now(timezone.utc)
    return RawGeoContext(
        timestamp=stamp.isoformat(),
        reverse_geocode=reverse_geocode,
        weather=weather,
        pois=tuple(pois or ())[: max(min(limit, MAX_CONTEXT_POIS), 0)],
    )


async def gather_context(client: httpx.AsyncClient, coord: Coordinate, radius_km: float) -> RawGeoContext:
    # All three run to completion; one failing never cancels the others
    weather, reverse, pois = await asyncio.gather(
        fetch_weather_and_elevation(client, coord),
        fetch_reverse_geocode(client, coord),
        fetch_nearby_pois(client, coord, radius_km),
        return_exceptions=True,
    )
    if isinstance(weather, BaseException):
        logging.error("Weather fetch crashed: %r", weather)
        weather = None
    if isinstance(reverse, BaseException):
        logging.error("Reverse geocode fetch crashed: %r", reverse)
        reverse = None
    poi_list: List[Dict[str, Any]]
    if isinstance(pois, BaseException):
        logging.error("POI fetch crashed: %r", pois)
        poi_list = []
    else:
        poi_list = pois
    return assemble_context(reverse, weather, poi_list)
