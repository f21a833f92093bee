"""Per-request access log with latency."""

import logging
import re
import time
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000
VERY_SLOW_REQUEST_MS = 3000
SLOW_PROBE_MS = 100

PROBE_PATHS = frozenset({"/health", "/health/ready"})

# Download tokens are bearer credentials and must not reach the logs.
_DOWNLOAD_TOKEN = re.compile(r"^(/download/)[^/]+")


def redact_path(path: str) -> str:
    """Replace the token in a download path with a placeholder."""
    return _DOWNLOAD_TOKEN.sub(r"\1{token}", path)


def _level_for(path: str, status_code: int, latency_ms: float, failed: bool) -> tuple[int, str]:
    """Pick a log level and message prefix for a finished request."""
    if path in PROBE_PATHS:
        # Probes run every few seconds; only slow ones are worth a line.
        return (logging.DEBUG if latency_ms > SLOW_PROBE_MS else logging.NOTSET), ""
    if failed or status_code >= 500:
        return logging.ERROR, ""
    if latency_ms > VERY_SLOW_REQUEST_MS:
        return logging.ERROR, "VERY SLOW REQUEST: "
    if latency_ms > SLOW_REQUEST_MS:
        return logging.WARNING, "SLOW REQUEST: "
    if status_code >= 400:
        return logging.WARNING, ""
    return logging.INFO, ""


async def latency_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log method, redacted path, status and latency for every request.

    Args:
        request: The incoming request.
        call_next: The next middleware/handler in the chain.

    Returns:
        Response: The response from the handler.
    """
    started = time.perf_counter()
    path = redact_path(request.url.path)
    status_code = 500
    failed = False

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception:
        failed = True
        raise
    finally:
        latency_ms = (time.perf_counter() - started) * 1000
        level, prefix = _level_for(path, status_code, latency_ms, failed)
        if level != logging.NOTSET:
            logger.log(
                level,
                "%s%s %s - %d - %.2fms",
                prefix,
                request.method,
                path,
                status_code,
                latency_ms,
                extra={
                    "method": request.method,
                    "path": path,
                    "status_code": status_code,
                    "latency_ms": round(latency_ms, 2),
                    "error": failed,
                },
            )
