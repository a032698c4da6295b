import copy

import pytest


_OPPORTUNITIES = [
    ("Specialty coffee", "The Harbor Roast Coffee Lab", "$150k - $220k"),
    ("Co-working", "Mission Desk Collective", "$300k - $450k"),
    ("Bike repair", "Spoke & Chain Workshop", "$60k - $90k"),
]

ANALYSIS_PAYLOAD = {
    "area_summary": "Dense mixed-use neighborhood with strong foot traffic.",
    "top_opportunities": [
        {
            "name": name,
            "rationale": f"{name} is under-served in the POI data.",
            "confidence_0_100": 70,
            "example_project": project,
            "project_description": "Small storefront serving local residents.",
            "estimated_cost": {
                "total": cost,
                "breakdown": ["Fitout: $50k", "Equipment: $30k", "Working capital: $20k"],
            },
        }
        for name, project, cost in _OPPORTUNITIES
    ],
    "land_use_suggestions": ["Ground-floor retail", "Mid-rise residential"],
    "risks": ["High commercial rents"],
    "recommendations": ["Survey pedestrian counts at peak hours"],
    "evidence": {
        "poi_counts_by_type": [{"type": "cafe", "count": 4}, {"type": "office", "count": 2}],
        "notable_places": ["Civic Center Plaza"],
        "elevation_m": 16.0,
        "weather_now": "14°C, overcast",
        "reverse_geocode_label": "Civic Center, San Francisco",
        "assumptions": ["POI data limited to the 30 nearest tagged elements"],
    },
    "voice_payload": {
        "location_coords": {"lat": 37.7749, "lng": -122.4194},
        "area_summary": "A busy mixed-use area.",
        "top_opportunities": [
            {"name": name, "concept": f"{project}, a neighborhood spot", "cost": cost}
            for name, project, cost in _OPPORTUNITIES
        ],
        "land_use_suggestions": ["Ground-floor retail", "Mid-rise residential"],
        "risks": ["High commercial rents"],
        "recommendations": ["Survey pedestrian counts at peak hours"],
    },
}


@pytest.fixture
def analysis_payload() -> dict:
    return copy.deepcopy(ANALYSIS_PAYLOAD)
