import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional


def log_tool_call(
    tool: str,
    fn: str,
    start_time: float,
    ok: bool,
    http_status: Optional[int] = None,
    level: int = logging.INFO,
    **extra: Any,
) -> None:
    """Emit one JSON log line describing an outbound call."""
    latency_ms = (time.monotonic() - start_time) * 1000
    log_data = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "tool": tool,
        "fn": fn,
        "latency_ms": f"{latency_ms:.2f}",
        "ok": ok,
        "http_status": http_status,
    }
    log_data.update(extra)
    logging.log(level, json.dumps(log_data, default=str))
