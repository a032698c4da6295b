from datetime import datetime, timezone

import httpx
import pytest
from pydantic import ValidationError

from geo_tools.context import assemble_context, gather_context
from geo_tools.models import Coordinate


SF = Coordinate(lat=37.7749, lng=-122.4194)


def test_pois_are_truncated_to_fifty() -> None:
    pois = [{"id": i} for i in range(120)]
    ctx = assemble_context(None, None, pois)
    assert len(ctx.pois) == 50
    assert ctx.pois[0] == {"id": 0}
    assert ctx.pois[-1] == {"id": 49}


def test_assembly_stamps_iso_timestamp_and_keeps_inputs() -> None:
    now = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    ctx = assemble_context({"display_name": "x"}, {"elevation": 3}, [], now=now)
    assert ctx.timestamp == "2025-01-02T03:04:05+00:00"
    assert ctx.reverse_geocode == {"display_name": "x"}
    assert ctx.weather == {"elevation": 3}
    assert ctx.pois == ()


def test_context_is_immutable() -> None:
    ctx = assemble_context(None, None, None)
    with pytest.raises(ValidationError):
        ctx.weather = {"elevation": 1}


@pytest.mark.asyncio
async def test_every_fetch_failing_degrades_to_empty_context() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        ctx = await gather_context(client, SF, 2)

    assert ctx.reverse_geocode is None
    assert ctx.weather is None
    assert ctx.pois == ()
    assert datetime.fromisoformat(ctx.timestamp).tzinfo is not None


@pytest.mark.asyncio
async def test_one_failure_does_not_cancel_siblings() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if "nominatim" in request.url.host:
            return httpx.Response(500)
        if request.method == "POST":
            return httpx.Response(200, json={"elements": [{"id": i} for i in range(30)]})
        return httpx.Response(200, json={"elevation": 16.0, "current": {"temperature_2m": 14.0}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        ctx = await gather_context(client, SF, 2)

    assert ctx.reverse_geocode is None
    assert ctx.weather == {"elevation": 16.0, "current": {"temperature_2m": 14.0}}
    assert len(ctx.pois) == 30


def test_configured_limit_cannot_exceed_fifty() -> None:
    ctx = assemble_context(None, None, [{"id": i} for i in range(80)], limit=75)
    assert len(ctx.pois) == 50
