import asyncio
import os
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Tuple

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
import uvicorn

from geo_tools.config import CONFIG
from geo_tools.deps import new_http_client
from geo_tools.models import Coordinate

from .analysis import AnalysisError, Reasoner
from .pipeline import LoadingState, run_analysis


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)


class AnalyzeRequest(BaseModel):
    coord: Coordinate
    radius_km: float = Field(2.0, gt=0)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests swap in a fake; production builds the Gemini reasoner lazily
    if not hasattr(app.state, "reasoner"):
        app.state.reasoner = None
    async with new_http_client() as http_client:
        app.state.http_client = http_client
        yield


app = FastAPI(title="Atlas Oracle - Orchestrator", lifespan=lifespan)


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


_STAGE_TRACES = {
    "fetching_data": ("context", "gather_context"),
    "reasoning": ("gemini", "analyze"),
}


async def stream_analysis(
    coord: Coordinate,
    radius_km: float,
    client: httpx.AsyncClient,
    reasoner: Optional[Reasoner] = None,
) -> AsyncIterator[str]:
    states: "asyncio.Queue[Optional[LoadingState]]" = asyncio.Queue()
    task = asyncio.create_task(
        run_analysis(coord, radius_km, client=client, reasoner=reasoner, on_state=states.put_nowait)
    )
    task.add_done_callback(lambda _: states.put_nowait(None))

    stage: Optional[Tuple[str, str]] = None
    stage_t0 = time.monotonic()
    try:
        while True:
            state = await states.get()
            if state is None:
                break
            if stage is not None:
                ms = (time.monotonic() - stage_t0) * 1000
                status = "error" if state == "error" else "complete"
                yield _sse(
                    {"type": "tool_trace", "service": stage[0], "fn": stage[1], "status": status, "duration_ms": f"{ms:.2f}"}
                )
                stage = None
            if state in ("complete", "error"):
                break
            yield _sse({"type": "status", "state": state})
            stage, stage_t0 = _STAGE_TRACES[state], time.monotonic()
            yield _sse({"type": "tool_trace", "service": stage[0], "fn": stage[1], "status": "pending"})

        try:
            result = await task
        except AnalysisError as e:
            yield _sse({"type": "status", "state": "error"})
            yield _sse({"type": "error", "content": f"Analysis failed. Please try again. {e.message}"})
        else:
            yield _sse({"type": "result", "content": result.model_dump(mode="json")})
            yield _sse({"type": "status", "state": "complete"})
        yield "data: [DONE]\n\n"
    finally:
        task.cancel()


@app.post("/analyze")
async def analyze_location(req: AnalyzeRequest, request: Request):
    client = request.app.state.http_client
    reasoner = getattr(request.app.state, "reasoner", None)
    return StreamingResponse(
        stream_analysis(req.coord, req.radius_km, client, reasoner),
        media_type="text/event-stream",
    )


@app.get("/")
async def root():
    return {"status": "ok", "model": CONFIG.gemini_model, "live_search": CONFIG.live_search}


if __name__ == "__main__":
    port = int(os.getenv("PORT", "3002"))
    uvicorn.run(app, host="0.0.0.0", port=port)
