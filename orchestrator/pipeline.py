from typing import Callable, Literal, Optional

import httpx

from geo_tools.deps import new_http_client
from geo_tools.context import gather_context
from geo_tools.models import Coordinate

from .analysis import Reasoner, analyze
from .schemas import AnalysisResult


LoadingState = Literal["idle", "fetching_data", "reasoning", "complete", "error"]


async def run_analysis(
    coord: Coordinate,
    radius_km: float,
    *,
    client: Optional[httpx.AsyncClient] = None,
    reasoner: Optional[Reasoner] = None,
    on_state: Optional[Callable[[LoadingState], None]] = None,
) -> AnalysisResult:
    """Fetch the geo context for an area, then reason over it.

    Raises ``AnalysisError`` when the reasoning step fails; the geo fetches
    themselves only ever degrade.
    """
    if radius_km <= 0:
        raise ValueError("radius_km must be positive")

    def report(state: LoadingState) -> None:
        if on_state is not None:
            on_state(state)

    report("fetching_data")
    if client is None:
        async with new_http_client() as own_client:
            context = await gather_context(own_client, coord, radius_km)
    else:
        context = await gather_context(client, coord, radius_km)

    report("reasoning")
    try:
        result = await analyze(coord, radius_km, context, reasoner=reasoner)
    except Exception:
        report("error")
        raise
    report("complete")
    return result
