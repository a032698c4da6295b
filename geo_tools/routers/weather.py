from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_api_key, get_http_client
from ..models import Coordinate
from ..sources import fetch_weather_and_elevation


router = APIRouter(dependencies=[Depends(get_api_key)])


class CurrentWeatherRequest(BaseModel):
    coord: Coordinate


class CurrentWeatherResponse(BaseModel):
    temp_c: Optional[float] = None
    weather_code: Optional[int] = None
    elevation_m: Optional[float] = None
    raw: Optional[Dict[str, Any]] = None


@router.post("/current", response_model=CurrentWeatherResponse)
async def current(
    req: CurrentWeatherRequest, client: httpx.AsyncClient = Depends(get_http_client)
) -> CurrentWeatherResponse:
    data = await fetch_weather_and_elevation(client, req.coord)
    if data is None:
        return CurrentWeatherResponse()

    now = data.get("current")
    if not isinstance(now, dict):
        now = {}
    try:
        temp_c = float(now["temperature_2m"]) if now.get("temperature_2m") is not None else None
        weather_code = int(now["weather_code"]) if now.get("weather_code") is not None else None
        elevation_m = float(data["elevation"]) if data.get("elevation") is not None else None
    except (TypeError, ValueError):
        # Malformed fields degrade to the raw record only
        temp_c = weather_code = elevation_m = None
    return CurrentWeatherResponse(temp_c=temp_c, weather_code=weather_code, elevation_m=elevation_m, raw=data)
