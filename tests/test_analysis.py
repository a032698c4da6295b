import json

import pytest

from geo_tools.context import assemble_context
from geo_tools.models import Coordinate
from orchestrator.analysis import AnalysisError, RESPONSE_SCHEMA, analyze, build_prompt, parse_analysis
from orchestrator.schemas import AnalysisResult


SF = Coordinate(lat=37.7749, lng=-122.4194)


class FakeReasoner:
    def __init__(self, reply=None, exc: Exception | None = None) -> None:
        self.reply = reply
        self.exc = exc
        self.prompts: list[str] = []

    async def __call__(self, prompt: str):
        self.prompts.append(prompt)
        if self.exc is not None:
            raise self.exc
        return self.reply


def test_parse_valid_payload(analysis_payload) -> None:
    result = parse_analysis(json.dumps(analysis_payload))
    assert isinstance(result, AnalysisResult)
    assert len(result.top_opportunities) == 3
    assert result.voice_payload.location_coords == SF


@pytest.mark.parametrize(
    "field",
    ["area_summary", "top_opportunities", "land_use_suggestions", "risks", "recommendations", "evidence", "voice_payload"],
)
def test_missing_top_level_field_is_rejected(analysis_payload, field) -> None:
    del analysis_payload[field]
    with pytest.raises(AnalysisError) as excinfo:
        parse_analysis(json.dumps(analysis_payload))
    assert excinfo.value.details


def test_missing_nested_field_is_rejected(analysis_payload) -> None:
    del analysis_payload["evidence"]["assumptions"]
    with pytest.raises(AnalysisError):
        parse_analysis(json.dumps(analysis_payload))


def test_confidence_out_of_range_is_rejected(analysis_payload) -> None:
    analysis_payload["top_opportunities"][0]["confidence_0_100"] = 140
    with pytest.raises(AnalysisError):
        parse_analysis(json.dumps(analysis_payload))


@pytest.mark.parametrize(
    "path, value",
    [
        (("top_opportunities", 0, "confidence_0_100"), "70"),
        (("evidence", "elevation_m"), "16.5"),
        (("evidence", "poi_counts_by_type", 0, "count"), "4"),
    ],
)
def test_numbers_sent_as_strings_are_rejected(analysis_payload, path, value) -> None:
    target = analysis_payload
    for key in path[:-1]:
        target = target[key]
    target[path[-1]] = value
    with pytest.raises(AnalysisError) as excinfo:
        parse_analysis(json.dumps(analysis_payload))
    assert excinfo.value.details


def test_integer_elevation_is_accepted(analysis_payload) -> None:
    analysis_payload["evidence"]["elevation_m"] = 16
    assert parse_analysis(json.dumps(analysis_payload)).evidence.elevation_m == 16.0


def test_json_wrapped_in_prose_is_recovered(analysis_payload) -> None:
    text = "Here is the analysis:\n```json\n" + json.dumps(analysis_payload) + "\n```"
    assert parse_analysis(text).area_summary == analysis_payload["area_summary"]


def test_invalid_json_is_rejected() -> None:
    with pytest.raises(AnalysisError, match="invalid JSON"):
        parse_analysis("not json at all")


def test_schema_requires_every_result_field() -> None:
    assert set(RESPONSE_SCHEMA["required"]) == set(AnalysisResult.model_fields)


def test_prompt_carries_location_context_and_instructions() -> None:
    ctx = assemble_context(None, None, [])
    prompt = build_prompt(SF, 2, ctx)
    assert "Coordinates: 37.7749, -122.4194" in prompt
    assert "Radius: 2km" in prompt
    assert '"reverse_geocode": null' in prompt
    assert "exactly 3" in prompt
    assert "not financial advice" in prompt
    assert "voice_payload" in prompt
    assert "assumptions" in prompt


@pytest.mark.asyncio
async def test_degraded_context_still_reaches_reasoning_service(analysis_payload) -> None:
    ctx = assemble_context(None, None, [])
    reasoner = FakeReasoner(reply=json.dumps(analysis_payload))
    result = await analyze(SF, 2, ctx, reasoner=reasoner)
    assert len(reasoner.prompts) == 1
    assert '"pois": []' in reasoner.prompts[0]
    assert result.evidence.assumptions


@pytest.mark.asyncio
async def test_service_failure_is_typed_and_not_retried() -> None:
    reasoner = FakeReasoner(exc=RuntimeError("503 Service Unavailable"))
    with pytest.raises(AnalysisError, match="503"):
        await analyze(SF, 2, assemble_context(None, None, []), reasoner=reasoner)
    assert len(reasoner.prompts) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", [None, "", "   "])
async def test_empty_response_is_an_error(reply) -> None:
    with pytest.raises(AnalysisError, match="No response"):
        await analyze(SF, 2, assemble_context(None, None, []), reasoner=FakeReasoner(reply=reply))


@pytest.mark.asyncio
async def test_partial_result_is_never_returned(analysis_payload) -> None:
    del analysis_payload["voice_payload"]
    with pytest.raises(AnalysisError):
        await analyze(SF, 2, assemble_context(None, None, []), reasoner=FakeReasoner(reply=json.dumps(analysis_payload)))
