"""Year-scoped sequential invoice numbers on top of the ledger.

The ledger has no atomic counter, so numbering is guarded twice:

1. Allocation and the row append run under one process-wide lock, so two
   requests in this process can never compute the same "next" number.
2. After the append, the Orders tab is re-read. If an earlier row (written
   by another process) carries the same number, this row is renumbered.
"""

import asyncio
import logging
import re
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from functools import lru_cache

from src.api.middleware.error_handler import UpstreamError
from src.core.config import get_settings
from src.core.ledger import Ledger, LedgerRow, find_in_rows, get_ledger, run_blocking

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 3
MAX_RENUMBER_ATTEMPTS = 5


def _now() -> datetime:
    return datetime.now(timezone.utc)


def invoice_pattern(prefix: str, year: int | str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(prefix)}-{re.escape(str(year))}-(\d+)$")


def next_invoice_number(existing: Iterable[str], prefix: str, year: int | str) -> str:
    """Compute the number following the highest one issued for a year.

    Values that don't match ``PREFIX-YEAR-NNN`` contribute nothing.

    Example:
        >>> next_invoice_number(["SNK-2025-007", "SNK-2024-100", ""], "SNK", 2025)
        'SNK-2025-008'
    """
    pattern = invoice_pattern(prefix, year)
    highest = 0
    for value in existing:
        match = pattern.match(value.strip())
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{year}-{highest + 1:0{SEQUENCE_WIDTH}d}"


def fallback_invoice_number(prefix: str, year: int | str, now: datetime) -> str:
    """Timestamp-derived number used when the ledger cannot be scanned."""
    return f"{prefix}-{year}-T{now.strftime('%Y%m%d%H%M%S%f')}"


class InvoiceNumberAllocator:
    """Allocates invoice numbers and appends the order row that uses them."""

    def __init__(
        self,
        ledger: Ledger | None = None,
        prefix: str | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.ledger = ledger or get_ledger()
        self.prefix = prefix or get_settings().invoice_prefix
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def _invoice_column(self) -> str:
        return self.ledger.orders_schema.label("invoice_number")

    @property
    def _session_column(self) -> str:
        return self.ledger.orders_schema.label("session_id")

    async def allocate(self, year: int | str | None = None) -> str:
        """Scan the Orders tab and return the next invoice number.

        Falls back to a timestamp-derived number if the scan fails; invoice
        issuance never blocks order creation.
        """
        year = year if year is not None else self._clock().year
        try:
            rows = await run_blocking(self.ledger.orders.get_all_rows)
        except UpstreamError as e:
            fallback = fallback_invoice_number(self.prefix, year, self._clock())
            logger.warning("Invoice scan failed (%s); using fallback number %s", e.message, fallback)
            return fallback

        column = self._invoice_column
        return next_invoice_number((row.get(column) for row in rows), self.prefix, year)

    async def allocate_and_append(
        self,
        session_id: str,
        build_row: Callable[[str], Mapping[str, str]],
        year: int | str | None = None,
    ) -> str:
        """Allocate a number, append the row built with it, and confirm it.

        Args:
            session_id: Session id of the order; locates the appended row.
            build_row: Builds the row cells for a given invoice number.
            year: Invoice year; defaults to the current year.

        Returns:
            str: The invoice number the stored row finally carries.

        Raises:
            UpstreamError: If the row cannot be appended.
        """
        year = year if year is not None else self._clock().year
        async with self._lock:
            invoice_number = await self.allocate(year)
            await run_blocking(self.ledger.orders.append_row, build_row(invoice_number), settle=True)
            logger.info("Order %s recorded with invoice %s", session_id, invoice_number)
            return await self._confirm_unique(session_id, invoice_number, year)

    async def _confirm_unique(self, session_id: str, invoice_number: str, year: int | str) -> str:
        """Renumber this session's row if an earlier row holds the same number."""
        for _ in range(MAX_RENUMBER_ATTEMPTS):
            try:
                rows = await run_blocking(self.ledger.orders.get_all_rows)
            except UpstreamError as e:
                logger.warning("Could not re-check invoice %s: %s", invoice_number, e.message)
                return invoice_number

            own = find_in_rows(rows, self._session_column, session_id)
            if own is None:
                logger.warning("Appended row for %s not visible yet; keeping %s", session_id, invoice_number)
                return invoice_number

            if not self._has_earlier_duplicate(rows, own, invoice_number):
                return invoice_number

            column = self._invoice_column
            renumbered = next_invoice_number((row.get(column) for row in rows), self.prefix, year)
            logger.warning(
                "Invoice %s already used by an earlier row; renumbering %s to %s",
                invoice_number,
                session_id,
                renumbered,
            )
            own.set(column, renumbered)
            try:
                await run_blocking(own.save, settle=True)
            except UpstreamError as e:
                logger.error("Could not renumber invoice for %s: %s", session_id, e.message)
                return invoice_number
            invoice_number = renumbered

        logger.error("Invoice for %s still collides after %d renumbers", session_id, MAX_RENUMBER_ATTEMPTS)
        return invoice_number

    def _has_earlier_duplicate(self, rows: list[LedgerRow], own: LedgerRow, invoice_number: str) -> bool:
        column = self._invoice_column
        return any(
            row.get(column) == invoice_number and row.row_number < own.row_number for row in rows
        )


@lru_cache
def get_invoice_allocator() -> InvoiceNumberAllocator:
    """Get the process-wide invoice allocator."""
    return InvoiceNumberAllocator()
