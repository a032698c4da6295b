from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_api_key, get_http_client
from ..models import Coordinate
from ..sources import fetch_reverse_geocode


router = APIRouter(dependencies=[Depends(get_api_key)])


class ReverseGeocodeRequest(BaseModel):
    coord: Coordinate


class ReverseGeocodeResponse(BaseModel):
    # None when Nominatim was unreachable; never an error status
    record: Optional[Dict[str, Any]] = None
    label: str = ""


@router.post("/reverse", response_model=ReverseGeocodeResponse)
async def reverse(
    req: ReverseGeocodeRequest, client: httpx.AsyncClient = Depends(get_http_client)
) -> ReverseGeocodeResponse:
    record = await fetch_reverse_geocode(client, req.coord)
    label = ""
    if record:
        label = str(record.get("display_name") or record.get("name") or "")
    return ReverseGeocodeResponse(record=record, label=label)
