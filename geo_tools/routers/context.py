import httpx
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..context import gather_context
from ..deps import get_api_key, get_http_client
from ..models import Coordinate, RawGeoContext


router = APIRouter(dependencies=[Depends(get_api_key)])


class ContextRequest(BaseModel):
    coord: Coordinate
    radius_km: float = Field(2.0, gt=0)


@router.post("", response_model=RawGeoContext)
async def context(req: ContextRequest, client: httpx.AsyncClient = Depends(get_http_client)) -> RawGeoContext:
    return await gather_context(client, req.coord, req.radius_km)
