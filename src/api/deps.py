"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends, Request

from src.api.middleware.error_handler import RateLimitError
from src.core.config import get_settings
from src.core.rate_limiter import get_rate_limiter


def get_client_ip(request: Request) -> str:
    """Get the originating client IP.

    X-Forwarded-For is only honoured when the direct peer is a configured
    trusted proxy. The address is then the right-most hop that is not itself
    a trusted proxy; anything left of it was written by the client.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = get_settings().trusted_proxies_set
    forwarded = request.headers.get("X-Forwarded-For")
    if not forwarded or peer not in trusted:
        return peer

    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer


async def check_download_rate_limit(request: Request) -> str:
    """Enforce the per-IP download rate limit.

    Returns:
        str: The client IP, for audit logging.

    Raises:
        RateLimitError: 429 if the client exceeded its allowance.
    """
    client_ip = get_client_ip(request)
    limiter = get_rate_limiter()
    decision = limiter.hit(f"download:{client_ip}")

    if not decision.allowed:
        raise RateLimitError(
            message="Too many download requests. Please try again later.",
            retry_after=decision.retry_after,
            limit=limiter.config.max_requests,
        )
    return client_ip


DownloadClientIP = Annotated[str, Depends(check_download_rate_limit)]
