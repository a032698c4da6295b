import json

import httpx
import pytest
from fastapi.testclient import TestClient

from geo_tools.models import Coordinate
from orchestrator.analysis import AnalysisError
from orchestrator.main import app
from orchestrator.pipeline import run_analysis


SF = Coordinate(lat=37.7749, lng=-122.4194)


def _offline_client() -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _reasoner(reply):
    async def call(prompt: str):
        return reply

    return call


def _collect_events(resp) -> list[dict]:
    events: list[dict] = []
    for line in resp.iter_lines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            break
        events.append(json.loads(data))
    return events


@pytest.mark.asyncio
async def test_pipeline_reports_states_in_order(analysis_payload) -> None:
    states: list[str] = []
    async with _offline_client() as client:
        result = await run_analysis(
            SF, 2, client=client, reasoner=_reasoner(json.dumps(analysis_payload)), on_state=states.append
        )
    assert states == ["fetching_data", "reasoning", "complete"]
    assert result.area_summary == analysis_payload["area_summary"]


@pytest.mark.asyncio
async def test_pipeline_surfaces_analysis_error() -> None:
    states: list[str] = []
    async with _offline_client() as client:
        with pytest.raises(AnalysisError):
            await run_analysis(SF, 2, client=client, reasoner=_reasoner(""), on_state=states.append)
    assert states == ["fetching_data", "reasoning", "error"]


@pytest.mark.asyncio
async def test_pipeline_rejects_non_positive_radius() -> None:
    with pytest.raises(ValueError):
        await run_analysis(SF, 0)


def test_analyze_endpoint_streams_result(analysis_payload) -> None:
    app.state.reasoner = _reasoner(json.dumps(analysis_payload))
    try:
        with TestClient(app) as client:
            app.state.http_client = _offline_client()
            with client.stream("POST", "/analyze", json={"coord": {"lat": 37.7749, "lng": -122.4194}, "radius_km": 2}) as resp:
                assert resp.status_code == 200
                events = _collect_events(resp)
    finally:
        del app.state.reasoner

    states = [e["state"] for e in events if e["type"] == "status"]
    assert states == ["fetching_data", "reasoning", "complete"]
    results = [e for e in events if e["type"] == "result"]
    assert results[0]["content"]["area_summary"] == analysis_payload["area_summary"]


def test_analyze_endpoint_reports_failure_as_error_event() -> None:
    app.state.reasoner = _reasoner("{}")
    try:
        with TestClient(app) as client:
            app.state.http_client = _offline_client()
            with client.stream("POST", "/analyze", json={"coord": {"lat": 37.7749, "lng": -122.4194}}) as resp:
                events = _collect_events(resp)
    finally:
        del app.state.reasoner

    errors = [e for e in events if e["type"] == "error"]
    assert errors and errors[0]["content"].startswith("Analysis failed. Please try again.")
    assert not [e for e in events if e["type"] == "result"]


def test_analyze_endpoint_validates_coordinates() -> None:
    with TestClient(app) as client:
        resp = client.post("/analyze", json={"coord": {"lat": 123.0, "lng": 0.0}, "radius_km": 2})
    assert resp.status_code == 422


def test_analyze_endpoint_traces_each_pipeline_stage(analysis_payload) -> None:
    app.state.reasoner = _reasoner(json.dumps(analysis_payload))
    try:
        with TestClient(app) as client:
            app.state.http_client = _offline_client()
            with client.stream("POST", "/analyze", json={"coord": {"lat": 37.7749, "lng": -122.4194}}) as resp:
                events = _collect_events(resp)
    finally:
        del app.state.reasoner

    traces = [(e["service"], e["status"]) for e in events if e["type"] == "tool_trace"]
    assert traces == [
        ("context", "pending"),
        ("context", "complete"),
        ("gemini", "pending"),
        ("gemini", "complete"),
    ]
    kinds = [e.get("state") or e["type"] for e in events]
    assert kinds.index("reasoning") > kinds.index("fetching_data")
    assert kinds[-2:] == ["result", "complete"]
