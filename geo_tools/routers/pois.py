from typing import Any, Dict, List

import httpx
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_api_key, get_http_client
from ..models import Coordinate
from ..overpass import fetch_nearby_pois


router = APIRouter(dependencies=[Depends(get_api_key)])


class NearbyRequest(BaseModel):
    coord: Coordinate
    radius_km: float = Field(2.0, gt=0)


class NearbyResponse(BaseModel):
    elements: List[Dict[str, Any]]


@router.post("/nearby", response_model=NearbyResponse)
async def nearby(req: NearbyRequest, client: httpx.AsyncClient = Depends(get_http_client)) -> NearbyResponse:
    elements = await fetch_nearby_pois(client, req.coord, req.radius_km)
    return NearbyResponse(elements=elements)
