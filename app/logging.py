from __future__ import annotations
import json
import logging
import sys
import time
from typing import Any, Callable
from starlette.requests import Request
from starlette.responses import Response

_STATE_KEYS = ("context_chars", "passages_used", "model_id", "attempted_models", "emitter")


def configure_logging(level: str = "INFO") -> None:
    """Single stdout handler for the service loggers."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))


def json_logger_middleware() -> Callable:
    """Return a Starlette middleware callable that logs a JSON line per request.

    It captures: method, path, status, latency_ms, and the chat attributes the
    chat route stores on request.state (context size, model used, emitter).
    """

    async def _middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
        start = time.perf_counter()
        status = 500
        try:
            response: Response = await call_next(request)
            status = response.status_code
        finally:
            latency_ms = round((time.perf_counter() - start) * 1000.0, 2)
            s = getattr(request, "state", None)
            payload = {
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "latency_ms": latency_ms,
            }
            for k in _STATE_KEYS:
                if s is not None and hasattr(s, k):
                    payload[k] = getattr(s, k)
            print(json.dumps(payload, default=str), flush=True)
        return response

    return _middleware
