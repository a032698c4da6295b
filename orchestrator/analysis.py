import json
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import google.generativeai as genai
from pydantic import ValidationError

from geo_tools.config import CONFIG
from geo_tools.models import Coordinate, RawGeoContext
from geo_tools.trace import log_tool_call

from .schemas import AnalysisResult


Reasoner = Callable[[str], Awaitable[Optional[str]]]


class AnalysisError(Exception):
    """The reasoning service could not produce a usable analysis."""

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


def _array(items: Dict[str, Any], description: Optional[str] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "ARRAY", "items": items}
    if description:
        schema["description"] = description
    return schema


_STRING = {"type": "STRING"}
_STRINGS = _array(_STRING)

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "area_summary": {
            "type": "STRING",
            "description": "A concise professional summary of the location's character.",
        },
        "top_opportunities": _array(
            {
                "type": "OBJECT",
                "properties": {
                    "name": _STRING,
                    "rationale": _STRING,
                    "confidence_0_100": {"type": "INTEGER"},
                    "example_project": {
                        "type": "STRING",
                        "description": "A specific, named example of a business that could exist here "
                        "(e.g. 'The Harbor Roast Coffee Lab').",
                    },
                    "project_description": {
                        "type": "STRING",
                        "description": "Description of the example project (size, target audience, vibe).",
                    },
                    "estimated_cost": {
                        "type": "OBJECT",
                        "properties": {
                            "total": {
                                "type": "STRING",
                                "description": "Estimated total startup cost range (e.g. '$150k - $220k').",
                            },
                            "breakdown": _array(_STRING, "3-4 key line items used to calculate the estimate."),
                        },
                        "required": ["total", "breakdown"],
                    },
                },
                "required": [
                    "name",
                    "rationale",
                    "confidence_0_100",
                    "example_project",
                    "project_description",
                    "estimated_cost",
                ],
            }
        ),
        "land_use_suggestions": _STRINGS,
        "risks": _STRINGS,
        "recommendations": _STRINGS,
        "evidence": {
            "type": "OBJECT",
            "properties": {
                "poi_counts_by_type": _array(
                    {
                        "type": "OBJECT",
                        "properties": {"type": _STRING, "count": {"type": "INTEGER"}},
                        "required": ["type", "count"],
                    },
                    "List of POI types and their counts found in the data.",
                ),
                "notable_places": _STRINGS,
                "elevation_m": {"type": "NUMBER"},
                "weather_now": _STRING,
                "reverse_geocode_label": _STRING,
                "assumptions": _STRINGS,
            },
            "required": [
                "poi_counts_by_type",
                "notable_places",
                "elevation_m",
                "weather_now",
                "reverse_geocode_label",
                "assumptions",
            ],
        },
        "voice_payload": {
            "type": "OBJECT",
            "properties": {
                "location_coords": {
                    "type": "OBJECT",
                    "properties": {"lat": {"type": "NUMBER"}, "lng": {"type": "NUMBER"}},
                    "required": ["lat", "lng"],
                },
                "area_summary": _STRING,
                "top_opportunities": _array(
                    {
                        "type": "OBJECT",
                        "properties": {
                            "name": _STRING,
                            "concept": {
                                "type": "STRING",
                                "description": "The specific example project name and concept.",
                            },
                            "cost": {"type": "STRING", "description": "The total estimated startup cost."},
                        },
                        "required": ["name", "concept", "cost"],
                    }
                ),
                "land_use_suggestions": _STRINGS,
                "risks": _STRINGS,
                "recommendations": _STRINGS,
            },
            "required": [
                "location_coords",
                "area_summary",
                "top_opportunities",
                "land_use_suggestions",
                "risks",
                "recommendations",
            ],
        },
    },
    "required": [
        "area_summary",
        "top_opportunities",
        "land_use_suggestions",
        "risks",
        "recommendations",
        "evidence",
        "voice_payload",
    ],
}


def build_prompt(coord: Coordinate, radius_km: float, context: RawGeoContext) -> str:
    context_json = context.model_dump_json(indent=2)
    return f"""
Analyze this location for business potential and urban planning context.

Coordinates: {coord.lat}, {coord.lng}
Radius: {radius_km:g}km

RAW DATA CONTEXT:
{context_json}

INSTRUCTIONS:
1. Reason over the provided raw data (POIs, weather, reverse geocoding). Where live search is available, also look up recent news, development plans, or specific business context for this exact area.
2. Provide a professional, analytical assessment.
3. Suggest exactly 3 specific, feasible business opportunities. For EACH opportunity, provide:
   - A rationale grounded in the data.
   - A CONCRETE EXAMPLE PROJECT: invent a realistic name and concept (e.g., "Greenline Logistics Hub" or "The Corner Bakery").
   - A description of the project (size, who it serves).
   - An ESTIMATED STARTUP COST range with a breakdown of 3-4 major line items (e.g., "Fitout: $50k", "Equipment: $30k"). State explicitly that these are rough estimates, not financial advice.
4. Fill 'voice_payload' with concise summaries suitable for a text-to-speech agent to read aloud.
   IMPORTANT: each 'voice_payload.top_opportunities' entry must repeat the exact example project name (as 'concept') and the exact total estimated cost (as 'cost') of the detailed opportunity at the same position, so the voice agent can discuss them.
5. Be strictly factual. If data is sparse or missing, record that in 'evidence.assumptions' instead of guessing with confidence.
""".strip()


class GeminiReasoner:
    """Schema-constrained Gemini call returning the raw JSON text."""

    def __init__(
        self,
        model_name: Optional[str] = None,
        api_key: Optional[str] = None,
        live_search: Optional[bool] = None,
    ) -> None:
        genai.configure(api_key=api_key or CONFIG.gemini_api_key)
        self.model_name = model_name or CONFIG.gemini_model
        use_search = CONFIG.live_search if live_search is None else live_search
        self._model = genai.GenerativeModel(
            self.model_name,
            generation_config={
                "response_mime_type": "application/json",
                "response_schema": RESPONSE_SCHEMA,
            },
            tools="google_search_retrieval" if use_search else None,
        )

    async def __call__(self, prompt: str) -> Optional[str]:
        response = await self._model.generate_content_async(prompt)
        try:
            return response.text
        except ValueError:
            # Raised by the SDK when the candidate carries no text part
            return None


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        m = re.search(r"\{.*\}", text, re.S)
        if not m:
            raise
        return json.loads(m.group(0))


def parse_analysis(text: str) -> AnalysisResult:
    try:
        data = _load_json(text)
    except json.JSONDecodeError as e:
        raise AnalysisError(f"Reasoning service returned invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise AnalysisError("Reasoning service returned JSON that is not an object")
    try:
        # strict mode: numbers sent as strings are rejected, not coerced
        return AnalysisResult.model_validate_json(json.dumps(data), strict=True)
    except ValidationError as e:
        raise AnalysisError(
            f"Analysis response failed schema validation ({e.error_count()} errors)",
            details=e.errors(include_url=False),
        ) from e


async def analyze(
    coord: Coordinate,
    radius_km: float,
    context: RawGeoContext,
    reasoner: Optional[Reasoner] = None,
) -> AnalysisResult:
    """Run one analysis attempt. Any failure surfaces as ``AnalysisError``."""
    prompt = build_prompt(coord, radius_km, context)
    start_time = time.monotonic()
    try:
        call = reasoner or GeminiReasoner()
        text = await call(prompt)
    except Exception as e:
        logging.error("Gemini Analysis Error: %s", e)
        log_tool_call("gemini", "analyze", start_time, ok=False, level=logging.WARNING)
        raise AnalysisError(f"Reasoning service request failed: {e}") from e

    if not text or not text.strip():
        log_tool_call("gemini", "analyze", start_time, ok=False, level=logging.WARNING)
        raise AnalysisError("No response from the reasoning service")

    try:
        result = parse_analysis(text)
    except AnalysisError as e:
        log_tool_call("gemini", "analyze", start_time, ok=False, level=logging.WARNING, error=e.message)
        raise
    log_tool_call(
        "gemini",
        "analyze",
        start_time,
        ok=True,
        opportunities=len(result.top_opportunities),
        assumptions=len(result.evidence.assumptions),
    )
    return result
