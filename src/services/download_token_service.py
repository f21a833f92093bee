"""One-time, time-limited download tokens for digital products.

Tokens live in the Download_Links tab. A token goes ``Issued -> Redeemed``
or ``Issued -> Expired``; expiry is checked lazily on lookup. Redemption
flips ``Used`` under a per-token lock, so of two concurrent requests for the
same token at most one succeeds.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

from src.api.middleware.error_handler import AlreadyUsedError, ExpiredError, NotFoundError
from src.core.catalog import get_catalog
from src.core.config import get_settings
from src.core.ledger import Ledger, LedgerRow, get_ledger, run_blocking
from src.core.locks import KeyedLock
from src.models.catalog import ProductCatalog
from src.models.download_token import DownloadToken, TokenRejection, TokenValidation
from src.models.order import OrderRecord
from src.services.order_builder import parse_timestamp

logger = logging.getLogger(__name__)

TRUE = "TRUE"
FALSE = "FALSE"

# Shared by every service instance in the process.
_redemption_locks = KeyedLock()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DownloadTokenService:
    """Issues, validates and redeems download tokens."""

    def __init__(
        self,
        ledger: Ledger | None = None,
        catalog: ProductCatalog | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.settings = get_settings()
        self.ledger = ledger or get_ledger()
        self.catalog = catalog or get_catalog()
        self._clock = clock

    def _col(self, field: str) -> str:
        return self.ledger.downloads_schema.label(field)

    def _to_token(self, row: LedgerRow) -> DownloadToken:
        expiry = parse_timestamp(row.get(self._col("expiry")))
        if expiry is None:
            logger.warning("Token row %d has an unreadable expiry; treating as expired", row.row_number)
            expiry = datetime.min.replace(tzinfo=timezone.utc)
        try:
            product_id = int(row.get(self._col("product_id")))
        except ValueError:
            product_id = -1

        return DownloadToken(
            token=row.get(self._col("token")),
            email=row.get(self._col("email")),
            product_id=product_id,
            invoice_number=row.get(self._col("invoice_number")),
            created=parse_timestamp(row.get(self._col("created"))) or expiry,
            expiry=expiry,
            used=row.get(self._col("used")).strip().upper() == TRUE,
            ip_address=row.get(self._col("ip_address")),
            download_date=parse_timestamp(row.get(self._col("download_date"))),
        )

    def _check(self, record: DownloadToken | None) -> TokenRejection | None:
        if record is None:
            return TokenRejection.NOT_FOUND
        if record.used:
            return TokenRejection.ALREADY_USED
        if record.is_expired(self._clock()):
            return TokenRejection.EXPIRED
        return None

    async def issue(self, email: str, product_id: int, invoice_number: str) -> str:
        """Persist a new unused token for one digital product.

        Returns:
            str: The token string.

        Raises:
            UpstreamError: If the row cannot be written.
        """
        token = str(uuid.uuid4())
        created = self._clock()
        expiry = created + timedelta(days=self.settings.download_link_expiry_days)
        fields = {
            "token": token,
            "email": email,
            "product_id": str(product_id),
            "created": created.isoformat(),
            "used": FALSE,
            "expiry": expiry.isoformat(),
            "ip_address": "",
            "download_date": "",
            "invoice_number": invoice_number,
        }
        await run_blocking(
            self.ledger.downloads.append_row,
            {self._col(name): value for name, value in fields.items()},
            settle=True,
        )
        logger.info("Download token issued for product %d, invoice %s", product_id, invoice_number)
        return token

    async def issue_for_order(
        self, order: OrderRecord, issued: dict[int, str] | None = None
    ) -> dict[int, str]:
        """Issue one token per digital product the order delivers.

        Bundles expand to their components. Each token is recorded in
        ``issued`` as soon as it is written, and products already present
        there are skipped, so a retry after a partial failure never issues
        twice.

        Returns:
            dict[int, str]: Product id -> token.
        """
        tokens = issued if issued is not None else {}
        for item in order.items:
            for product_id in self.catalog.delivered_product_ids(item.product_id):
                if product_id in tokens:
                    continue
                tokens[product_id] = await self.issue(
                    order.customer.email, product_id, order.invoice_number
                )
        return tokens

    async def find(self, token: str) -> DownloadToken | None:
        row = await run_blocking(self.ledger.downloads.find_row, self._col("token"), token)
        return self._to_token(row) if row else None

    async def validate(self, token: str, ip_address: str | None = None) -> TokenValidation:
        """Look up a token without redeeming it."""
        record = await self.find(token)
        reason = self._check(record)
        if reason is not None:
            logger.info("Download token rejected (%s) for %s", reason.value, ip_address or "unknown client")
            return TokenValidation(valid=False, reason=reason)
        return TokenValidation(
            valid=True,
            product_id=record.product_id,
            email=record.email,
            expiry=record.expiry,
        )

    async def redeem(self, token: str, ip_address: str) -> DownloadToken:
        """Mark a token used, if it still can be.

        The row is re-read and flipped while holding the token's lock, so the
        check and the write act as one conditional update.

        Raises:
            NotFoundError: Unknown token.
            AlreadyUsedError: Token was already redeemed.
            ExpiredError: Token is past its expiry.
            UpstreamError: Ledger unavailable.
        """
        async with _redemption_locks.hold(token):
            row = await run_blocking(self.ledger.downloads.find_row, self._col("token"), token)
            record = self._to_token(row) if row else None
            reason = self._check(record)
            if reason == TokenRejection.NOT_FOUND:
                raise NotFoundError("Download link not found")
            if reason == TokenRejection.ALREADY_USED:
                raise AlreadyUsedError()
            if reason == TokenRejection.EXPIRED:
                raise ExpiredError()

            redeemed_at = self._clock()
            row.set(self._col("used"), TRUE)
            row.set(self._col("ip_address"), ip_address)
            row.set(self._col("download_date"), redeemed_at.isoformat())
            await run_blocking(row.save, settle=True)

        logger.info("Download token redeemed for product %d from %s", record.product_id, ip_address)
        return replace(record, used=True, ip_address=ip_address, download_date=redeemed_at)

    def resolve_file(self, product_id: int) -> tuple[Path, str] | None:
        """Locate the file for a product.

        Returns:
            tuple[Path, str] | None: File path and download filename, or None
            if the product has no file on disk.
        """
        product = self.catalog.get(product_id)
        if product is None:
            return None
        filename = product.download_file or f"product_{product_id}.pdf"
        path = self.settings.downloads_dir / filename
        if not path.is_file():
            logger.error("Download file missing for product %d: %s", product_id, path)
            return None
        return path, product.download_filename or filename

    def download_url(self, token: str) -> str:
        return f"{self.settings.domain.rstrip('/')}/download/{token}"
