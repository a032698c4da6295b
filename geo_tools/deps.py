from typing import Optional
import hmac

import httpx
from fastapi import Header, HTTPException, status, Request

from .config import CONFIG


def new_http_client() -> httpx.AsyncClient:
    """Client for the open-data upstreams; every request identifies the app."""
    return httpx.AsyncClient(
        timeout=CONFIG.http_timeout_sec,
        headers={"User-Agent": CONFIG.user_agent},
        follow_redirects=True,
    )


def get_api_key(x_api_key: Optional[str] = Header(default=None)) -> str:
    expected = CONFIG.api_key
    if not expected or not x_api_key or not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key")
    return x_api_key


def get_http_client(request: Request) -> httpx.AsyncClient:
    client: Optional[httpx.AsyncClient] = getattr(request.app.state, "http_client", None)
    if client is None or client.is_closed:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="HTTP client not initialized")
    return client
