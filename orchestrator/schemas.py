"""Shape of the structured analysis returned by the reasoning service.

Every field is required. A response that does not validate against these
models is treated as a failed analysis; partial results are never used.
"""

from typing import List

from pydantic import BaseModel, Field

from geo_tools.models import Coordinate


class EstimatedCost(BaseModel):
    total: str
    breakdown: List[str]


class Opportunity(BaseModel):
    name: str
    rationale: str
    confidence_0_100: int = Field(..., ge=0, le=100)
    example_project: str
    project_description: str
    estimated_cost: EstimatedCost


class PoiCount(BaseModel):
    type: str
    count: int


class Evidence(BaseModel):
    poi_counts_by_type: List[PoiCount]
    notable_places: List[str]
    elevation_m: float
    weather_now: str
    reverse_geocode_label: str
    assumptions: List[str]


class VoiceOpportunity(BaseModel):
    name: str
    concept: str
    cost: str


class VoicePayload(BaseModel):
    location_coords: Coordinate
    area_summary: str
    top_opportunities: List[VoiceOpportunity]
    land_use_suggestions: List[str]
    risks: List[str]
    recommendations: List[str]


class AnalysisResult(BaseModel):
    area_summary: str
    top_opportunities: List[Opportunity]
    land_use_suggestions: List[str]
    risks: List[str]
    recommendations: List[str]
    evidence: Evidence
    voice_payload: VoicePayload
