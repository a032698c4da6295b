from __future__ import annotations

from typing import Optional
from pathlib import Path
import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table
import httpx
from pydantic import ValidationError

from geo_tools.config import CONFIG
from geo_tools.models import Coordinate
from orchestrator.analysis import AnalysisError
from orchestrator.pipeline import run_analysis
from orchestrator.schemas import AnalysisResult
from orchestrator.voice import CallState, VoiceSession
from orchestrator.voice_backends import ElevenLabsTransport, PyAudioMicrophoneProbe


app = typer.Typer(help="Atlas Oracle: location intelligence for a point and radius.")
console = Console()
trace_console = Console(stderr=True)

# San Francisco
DEFAULT_LAT = 37.7749
DEFAULT_LNG = -122.4194


def _print_result(result: AnalysisResult) -> None:
    console.print(f"\n[bold]Area summary[/bold]\n{result.area_summary}\n")
    table = Table(title="Top opportunities")
    table.add_column("Opportunity")
    table.add_column("Example project")
    table.add_column("Est. cost")
    table.add_column("Confidence", justify="right")
    for opp in result.top_opportunities:
        table.add_row(opp.name, opp.example_project, opp.estimated_cost.total, str(opp.confidence_0_100))
    console.print(table)
    if result.evidence.assumptions:
        console.print("[dim]Assumptions: " + "; ".join(result.evidence.assumptions) + "[/dim]")
    console.print("[dim]Cost figures are rough estimates, not financial advice.[/dim]")


def _save_result(result: AnalysisResult, output_file: Path) -> None:
    try:
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        console.print(f"\nSaved analysis to {output_file}", style="green")
    except OSError as e:
        trace_console.print(f"Failed to write file: {e}", style="bold red")


def _analyze_remote(coord: Coordinate, radius_km: float) -> Optional[AnalysisResult]:
    url = f"{CONFIG.orchestrator_url.rstrip('/')}/analyze"
    result: Optional[AnalysisResult] = None
    with console.status("Analyzing location..."):
        try:
            with httpx.stream(
                "POST",
                url,
                json={"coord": coord.model_dump(), "radius_km": radius_km},
                headers={"Accept": "text/event-stream", "Content-Type": "application/json"},
                timeout=120,
            ) as resp:
                resp.raise_for_status()
                for raw_line in resp.iter_lines():
                    line = raw_line.strip()
                    if not line or not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    try:
                        payload = json.loads(data)
                    except json.JSONDecodeError:
                        continue

                    ptype = payload.get("type")
                    if ptype == "status":
                        trace_console.print(f"[state] {payload.get('state')}", style="dim")
                    elif ptype == "tool_trace":
                        service = payload.get("service")
                        fn = payload.get("fn")
                        status = payload.get("status")
                        dur = payload.get("duration_ms")
                        suffix = f" ({dur} ms)" if dur is not None else ""
                        trace_console.print(f"[trace] {service}:{fn} -> {status}{suffix}", style="dim")
                    elif ptype == "result":
                        try:
                            result = AnalysisResult.model_validate(payload.get("content"))
                        except ValidationError as e:
                            trace_console.print(f"Malformed result from orchestrator: {e}", style="bold red")
                    elif ptype == "error":
                        trace_console.print(payload.get("content", "Unknown error"), style="bold red")
        except httpx.HTTPError as e:
            trace_console.print(f"Request failed: {e}", style="bold red")
    return result


def _analyze_local(coord: Coordinate, radius_km: float) -> Optional[AnalysisResult]:
    def on_state(state: str) -> None:
        trace_console.print(f"[state] {state}", style="dim")

    try:
        return asyncio.run(run_analysis(coord, radius_km, on_state=on_state))
    except AnalysisError as e:
        trace_console.print(f"Analysis failed. Please try again. {e.message}", style="bold red")
        return None


@app.command()
def analyze(
    lat: float = typer.Argument(DEFAULT_LAT, help="Latitude of the point to analyze."),
    lng: float = typer.Argument(DEFAULT_LNG, help="Longitude of the point to analyze."),
    radius: float = typer.Option(2.0, "--radius", "-r", help="Analysis radius in km (usually 1, 2 or 5)."),
    output_file: Optional[Path] = typer.Option(None, "--output", "-o", help="Save the analysis JSON to file."),
    local: bool = typer.Option(False, "--local", help="Run the pipeline in-process instead of via the orchestrator."),
) -> None:
    try:
        coord = Coordinate(lat=lat, lng=lng)
    except ValidationError:
        console.print("Latitude must be within [-90, 90] and longitude within [-180, 180].", style="bold red")
        raise typer.Exit(code=1)
    if radius <= 0:
        console.print("Radius must be positive.", style="bold red")
        raise typer.Exit(code=1)

    result = _analyze_local(coord, radius) if local else _analyze_remote(coord, radius)
    if result is None:
        raise typer.Exit(code=1)
    _print_result(result)
    if output_file:
        _save_result(result, output_file)


async def _run_call(result: AnalysisResult, user_name: str) -> Optional[str]:
    transport = ElevenLabsTransport()
    session = VoiceSession(transport, PyAudioMicrophoneProbe(), user_name=user_name)
    transport.bind(session.dispatch)
    session.seed(result)
    if session.location is not None:
        console.print(f"Loaded pin: {session.location.lat}, {session.location.lng}", style="dim")

    await session.start()
    printed = 0
    last_status = ""
    try:
        while session.state in (CallState.CONNECTING, CallState.CONNECTED):
            status = session.status_line()
            if status != last_status:
                trace_console.print(status, style="dim")
                last_status = status
            messages = session.messages
            for m in messages[printed:]:
                who = "You" if m.source == "user" else "Atlas Oracle"
                style = "cyan" if m.source == "user" else "white"
                console.print(f"[dim]{who} • {m.timestamp}[/dim]  {m.message}", style=style)
            printed = len(messages)
            await asyncio.sleep(0.25)
    finally:
        session.end()
        final_status = session.status_line()
        session.close()
    return final_status


@app.command()
def call(
    result_file: Path = typer.Argument(..., help="Analysis JSON saved with 'analyze --output'."),
    user_name: str = typer.Option("User", "--name", help="How the voice agent should address you."),
) -> None:
    """Talk the analysis through with the voice agent. Ctrl-C hangs up."""
    try:
        result = AnalysisResult.model_validate_json(result_file.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        console.print(f"Could not load analysis from {result_file}: {e}", style="bold red")
        raise typer.Exit(code=1)

    try:
        final_status = asyncio.run(_run_call(result, user_name))
    except KeyboardInterrupt:
        final_status = "Call ended."
    console.print(final_status or "", style="bold")


if __name__ == "__main__":
    app()
