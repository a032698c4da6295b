"""Nearby points of interest from the public Overpass mirrors.

The mirrors serve the same data for the same query, so they are tried in
order and the first one that answers wins. A busy mirror answers 429/504
quickly thanks to the server-side timeout baked into the query.
"""

from typing import Any, Dict, List, Optional, Sequence
import logging
import time

import httpx

from .config import CONFIG
from .models import Coordinate
from .trace import log_tool_call


OVERPASS_MIRRORS: Sequence[str] = CONFIG.overpass_mirrors

QUERY_TIMEOUT_SEC = 10
MAX_SERVER_RESULTS = 30


def build_overpass_query(coord: Coordinate, radius_km: float) -> str:
    radius_m = int(round(radius_km * 1000))
    around = f"around:{radius_m},{coord.lat},{coord.lng}"
    return (
        f"[out:json][timeout:{QUERY_TIMEOUT_SEC}];\n"
        "(\n"
        f'  node["amenity"]({around});\n'
        f'  way["amenity"]({around});\n'
        f'  node["office"]({around});\n'
        f'  node["shop"]({around});\n'
        ");\n"
        f"out center {MAX_SERVER_RESULTS};\n"
    )


async def fetch_nearby_pois(
    client: httpx.AsyncClient,
    coord: Coordinate,
    radius_km: float,
    mirrors: Sequence[str] = OVERPASS_MIRRORS,
) -> List[Dict[str, Any]]:
    """Return the POI elements from the first mirror that answers.

    Never raises: if every mirror fails the result is an empty list, which
    downstream analysis treats as valid (if sparse) input.
    """
    query = build_overpass_query(coord, radius_km)

    for server in mirrors:
        start_time = time.monotonic()
        http_status: Optional[int] = None
        try:
            resp = await client.post(server, data={"data": query})
            http_status = resp.status_code
            if resp.status_code != 200:
                logging.warning(
                    "Overpass fetch failed on %s with status %s. Trying next mirror...",
                    server,
                    resp.status_code,
                )
                log_tool_call("pois", "nearby", start_time, ok=False, http_status=http_status, mirror=server)
                continue
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logging.warning("Network error requesting %s: %s", server, e)
            log_tool_call("pois", "nearby", start_time, ok=False, http_status=http_status, mirror=server)
            continue

        elements = data.get("elements") if isinstance(data, dict) else None
        if not isinstance(elements, list):
            elements = []
        log_tool_call(
            "pois",
            "nearby",
            start_time,
            ok=True,
            http_status=http_status,
            mirror=server,
            count=len(elements),
        )
        return elements

    logging.error("All Overpass servers failed or timed out.")
    return []
