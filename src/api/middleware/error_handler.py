"""Domain errors and the middleware that turns them into JSON responses."""

import logging
import time
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from src.api.middleware.latency_logging import redact_path
from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base class for errors that map to an HTTP status.

    Subclasses set ``status_code`` and ``error_type``; callers only pass a
    message.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type: str = "api_error"
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None, details: list[dict[str, Any]] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class NotFoundError(APIError):
    """Referenced order or token does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    error_type = "not_found"
    default_message = "Resource not found"


class ValidationError(APIError):
    """Bad or missing client input. Raised before any side effect."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "validation_error"
    default_message = "Validation error"


class SignatureError(APIError):
    """Webhook payload failed authenticity verification."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "signature_error"
    default_message = "Invalid signature"


class ExpiredError(APIError):
    """Download token is past its expiry."""

    status_code = status.HTTP_410_GONE
    error_type = "expired"
    default_message = "Download link expired"


class AlreadyUsedError(APIError):
    """Download token has already been redeemed."""

    status_code = status.HTTP_410_GONE
    error_type = "already_used"
    default_message = "Download link already used"


class UpstreamError(APIError):
    """Ledger store, payment gateway or notifier unavailable."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "upstream_error"
    default_message = "Upstream service unavailable"


class RateLimitError(APIError):
    """Client exceeded its request allowance."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_type = "rate_limit_exceeded"
    default_message = "Rate limit exceeded"

    def __init__(
        self,
        message: str | None = None,
        retry_after: int = 60,
        limit: int = 5,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.retry_after = retry_after
        self.limit = limit


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Build the JSON body shared by every error response."""
    body = ErrorResponse.from_exception(
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


def _rate_limit_headers(response: Response, error: RateLimitError) -> None:
    response.headers["Retry-After"] = str(error.retry_after)
    response.headers["X-RateLimit-Limit"] = str(error.limit)
    response.headers["X-RateLimit-Remaining"] = "0"
    response.headers["X-RateLimit-Reset"] = str(int(time.time()) + error.retry_after)


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Convert exceptions escaping a route into JSON error responses.

    Domain errors keep their status code and message. Anything unexpected
    is logged with its traceback and reported as a generic 500.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: The route's response or an error response.
    """
    request_id = request.headers.get("X-Request-ID")
    context = {"request_id": request_id, "path": redact_path(request.url.path)}

    try:
        return await call_next(request)

    except APIError as e:
        level = logging.ERROR if e.status_code >= 500 else logging.WARNING
        logger.log(level, "%s on %s %s: %s", e.error_type, request.method, context["path"], e.message, extra=context)
        response = create_error_response(e.error_type, e.message, e.status_code, e.details, request_id)
        if isinstance(e, RateLimitError):
            _rate_limit_headers(response, e)
        return response

    except HTTPException as e:
        logger.warning("HTTP %s on %s: %s", e.status_code, context["path"], e.detail, extra=context)
        return create_error_response("http_error", str(e.detail), e.status_code, request_id=request_id)

    except Exception:
        logger.exception("Unhandled exception on %s %s", request.method, context["path"], extra=context)
        return create_error_response(
            "internal_error",
            "An unexpected error occurred",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )
