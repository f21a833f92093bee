"""Download redemption routes for digital products."""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, status
from fastapi.responses import FileResponse, RedirectResponse

from src.api.deps import DownloadClientIP
from src.api.middleware.error_handler import AlreadyUsedError, ExpiredError, NotFoundError, UpstreamError
from src.core.config import get_settings
from src.models.download_token import TokenRejection
from src.services.download_token_service import DownloadTokenService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["downloads"])

# Reason codes understood by the storefront's error page.
REASON_INVALID = "invalid"
REASON_ALREADY_USED = "already-used"
REASON_EXPIRED = "expired"
REASON_SERVER_ERROR = "server-error"

REJECTION_REASONS = {
    TokenRejection.NOT_FOUND: REASON_INVALID,
    TokenRejection.ALREADY_USED: REASON_ALREADY_USED,
    TokenRejection.EXPIRED: REASON_EXPIRED,
}


def error_redirect(reason: str) -> RedirectResponse:
    """Redirect to the storefront's download error page."""
    base = get_settings().frontend_url.rstrip("/")
    return RedirectResponse(
        url=f"{base}/download-error.html?{urlencode({'reason': reason})}",
        status_code=status.HTTP_303_SEE_OTHER,
    )


@router.get(
    "/download/{token}",
    response_class=FileResponse,
    response_model=None,
    responses={
        200: {"description": "The purchased file"},
        303: {"description": "Redirect to the error page with a reason code"},
        429: {"description": "Too many download requests from this IP"},
    },
    summary="Redeem a download link",
    description="Streams a purchased file once per link. Rate-limited per client IP.",
)
async def download(token: str, client_ip: DownloadClientIP) -> FileResponse | RedirectResponse:
    """Redeem a one-time download token.

    The file is located before the token is burned, so a missing file never
    consumes the customer's link.

    Args:
        token: Download token from the emailed link.
        client_ip: Client IP, after the rate limit check.

    Returns:
        FileResponse | RedirectResponse: The file, or a redirect carrying a reason code.
    """
    service = DownloadTokenService()

    try:
        validation = await service.validate(token, client_ip)
        if not validation.valid:
            return error_redirect(REJECTION_REASONS[validation.reason])

        resolved = service.resolve_file(validation.product_id)
        if resolved is None:
            return error_redirect(REASON_SERVER_ERROR)
        path, filename = resolved

        await service.redeem(token, client_ip)
    except NotFoundError:
        return error_redirect(REASON_INVALID)
    except AlreadyUsedError:
        logger.info("Concurrent redemption lost for a token from %s", client_ip)
        return error_redirect(REASON_ALREADY_USED)
    except ExpiredError:
        return error_redirect(REASON_EXPIRED)
    except (UpstreamError, OSError) as e:
        logger.error("Download failed for a token from %s: %s", client_ip, str(e))
        return error_redirect(REASON_SERVER_ERROR)

    logger.info("Serving %s to %s", filename, client_ip)
    return FileResponse(path, media_type="application/pdf", filename=filename)
