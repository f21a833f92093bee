"""Download token type definitions."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TokenRejection(str, Enum):
    """Why a download token cannot be redeemed."""

    NOT_FOUND = "not-found"
    ALREADY_USED = "already-used"
    EXPIRED = "expired"


@dataclass(frozen=True)
class DownloadToken:
    """A one-time, time-limited credential for one digital product."""

    token: str
    email: str
    product_id: int
    invoice_number: str
    created: datetime
    expiry: datetime
    used: bool = False
    ip_address: str = ""
    download_date: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expiry


@dataclass(frozen=True)
class TokenValidation:
    """Result of looking up a token without redeeming it."""

    valid: bool
    reason: TokenRejection | None = None
    product_id: int | None = None
    email: str | None = None
    expiry: datetime | None = None
