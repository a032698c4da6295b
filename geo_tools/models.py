from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class RawGeoContext(BaseModel):
    """Everything the reasoning service gets to see about an area.

    Built once per analysis request by the context assembler and never
    mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: str
    reverse_geocode: Optional[Dict[str, Any]] = None
    weather: Optional[Dict[str, Any]] = None
    pois: Tuple[Dict[str, Any], ...] = ()
