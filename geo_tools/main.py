"""Tools service: the open-data fetches behind an API key, one route per source."""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
import uvicorn

from geo_tools.routers import context, geo, pois, weather
from .config import CONFIG
from .deps import get_api_key, new_http_client


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

ROUTES = (
    ("/geo", geo.router),
    ("/weather", weather.router),
    ("/pois", pois.router),
    ("/context", context.router),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with new_http_client() as http_client:
        app.state.http_client = http_client
        logging.info("geo tools up; overpass mirrors: %s", ", ".join(CONFIG.overpass_mirrors))
        yield


app = FastAPI(title="Atlas Oracle Geo Tools", lifespan=lifespan)
app.state.limiter = Limiter(key_func=get_remote_address, default_limits=[CONFIG.rate_limit])
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=512)
for prefix, router in ROUTES:
    app.include_router(router, prefix=prefix)


@app.get("/", dependencies=[Depends(get_api_key)])
async def root():
    return {
        "status": "ok",
        "routes": [prefix for prefix, _ in ROUTES],
        "overpass_mirrors": list(CONFIG.overpass_mirrors),
        "poi_context_limit": CONFIG.poi_context_limit,
    }


if __name__ == "__main__":
    port = int(os.getenv("PORT", "3001"))
    uvicorn.run(app, host="0.0.0.0", port=port)
