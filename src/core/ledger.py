"""Spreadsheet-backed ledger store.

The ledger is a set of row-oriented tabs with no transactions, no atomic
increment and no uniqueness constraints. Callers that need those guarantees
build them on top (see the invoice allocator and the download token
service). Two backends share one interface:

- ``SheetsLedgerTab``: a Google Sheets tab accessed through the Sheets v4 API.
- ``InMemoryLedgerTab``: process-local rows for local development and tests.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol, TypeVar

import google_auth_httplib2
import httplib2
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.api.middleware.error_handler import UpstreamError
from src.core.config import get_settings
from src.core.ledger_schema import LedgerSchema, download_links_schema, orders_schema

logger = logging.getLogger(__name__)

T = TypeVar("T")

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

# Retry configuration for Sheets API calls
MAX_RETRIES = 3
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 8


class LedgerRow:
    """One ledger row addressed by column label.

    Values are always strings, as stored in the sheet. ``set`` only stages a
    change; ``save`` writes the staged row back to its tab.
    """

    def __init__(self, tab: "LedgerTab", row_number: int, values: Mapping[str, str]) -> None:
        self._tab = tab
        self.row_number = row_number
        self._values: dict[str, str] = dict(values)
        self._dirty: set[str] = set()

    def get(self, column: str) -> str:
        """Return the cell value for a column label, '' when absent."""
        return self._values.get(column, "")

    def set(self, column: str, value: str) -> None:
        """Stage a new value for a column label."""
        self._values[column] = value
        self._dirty.add(column)

    def save(self) -> None:
        """Persist staged changes to the underlying tab."""
        if not self._dirty:
            return
        self._tab.save_row(self)
        self._dirty.clear()

    def as_dict(self) -> dict[str, str]:
        """Return a copy of the row values keyed by column label."""
        return dict(self._values)

    def __repr__(self) -> str:
        return f"LedgerRow(tab={self._tab.title!r}, row_number={self.row_number})"


class LedgerTab(Protocol):
    """Operations every ledger tab backend supports."""

    title: str

    def append_row(self, fields: Mapping[str, str]) -> None: ...

    def get_all_rows(self) -> list[LedgerRow]: ...

    def find_row(self, column: str, value: str) -> LedgerRow | None: ...

    def save_row(self, row: LedgerRow) -> None: ...


def find_in_rows(rows: list[LedgerRow], column: str, value: str) -> LedgerRow | None:
    """Return the first row whose column equals value."""
    for row in rows:
        if row.get(column) == value:
            return row
    return None


class InMemoryLedgerTab:
    """Thread-safe in-process ledger tab.

    Mirrors the sheet semantics: rows are plain string maps, row numbers
    start at 2 (row 1 is the header), and there is no uniqueness checking.
    """

    def __init__(self, title: str, headers: list[str]) -> None:
        self.title = title
        self.headers = list(headers)
        self._rows: list[dict[str, str]] = []
        self._lock = threading.Lock()

    def append_row(self, fields: Mapping[str, str]) -> None:
        with self._lock:
            self._rows.append({label: str(fields.get(label, "")) for label in self.headers})

    def get_all_rows(self) -> list[LedgerRow]:
        with self._lock:
            snapshot = [dict(values) for values in self._rows]
        return [LedgerRow(self, index + 2, values) for index, values in enumerate(snapshot)]

    def find_row(self, column: str, value: str) -> LedgerRow | None:
        return find_in_rows(self.get_all_rows(), column, value)

    def save_row(self, row: LedgerRow) -> None:
        index = row.row_number - 2
        with self._lock:
            if index < 0 or index >= len(self._rows):
                raise UpstreamError(f"Row {row.row_number} does not exist in {self.title}")
            self._rows[index] = {label: row.get(label) for label in self.headers}

    def clear(self) -> None:
        """Drop all rows. Test helper."""
        with self._lock:
            self._rows.clear()


def _column_letter(index: int) -> str:
    """Convert a 1-based column index to an A1 column letter."""
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def _is_transient(exc: BaseException) -> bool:
    """Transport failures and 429/5xx responses are worth retrying."""
    if isinstance(exc, HttpError):
        return exc.resp.status == 429 or exc.resp.status >= 500
    return isinstance(exc, (socket.timeout, TimeoutError, ConnectionError, httplib2.HttpLib2Error))


@retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
    reraise=True,
)
def _execute(request: Any) -> Any:
    """Execute a googleapiclient request with retry logic."""
    return request.execute()


class SheetsLedgerTab:
    """A Google Sheets tab used as a ledger table.

    httplib2 connections are not thread-safe, so each worker thread gets its
    own API client.
    """

    def __init__(
        self,
        credentials: service_account.Credentials,
        spreadsheet_id: str,
        title: str,
        headers: list[str],
        timeout: float,
    ) -> None:
        self.title = title
        self.spreadsheet_id = spreadsheet_id
        self._credentials = credentials
        self._timeout = timeout
        self._expected_headers = list(headers)
        self._headers: list[str] | None = None
        self._local = threading.local()
        self._init_lock = threading.Lock()

    def _service(self) -> Any:
        service = getattr(self._local, "service", None)
        if service is None:
            http = google_auth_httplib2.AuthorizedHttp(
                self._credentials, http=httplib2.Http(timeout=self._timeout)
            )
            service = build("sheets", "v4", http=http, cache_discovery=False)
            self._local.service = service
        return service

    def _call(self, operation: str, request_factory: Callable[[Any], Any]) -> Any:
        try:
            return _execute(request_factory(self._service()))
        except (HttpError, OSError, httplib2.HttpLib2Error) as e:
            logger.error("Sheets %s failed on tab %s: %s", operation, self.title, str(e))
            raise UpstreamError(f"Ledger {operation} failed") from e

    def _range(self, a1: str) -> str:
        return f"'{self.title}'!{a1}"

    def ensure_ready(self) -> list[str]:
        """Create the tab and header row if missing; append absent columns.

        Returns:
            list[str]: The header row as stored in the sheet.
        """
        with self._init_lock:
            if self._headers is not None:
                return self._headers

            meta = self._call(
                "metadata read",
                lambda s: s.spreadsheets().get(
                    spreadsheetId=self.spreadsheet_id, fields="sheets.properties.title"
                ),
            )
            titles = {sheet["properties"]["title"] for sheet in meta.get("sheets", [])}
            if self.title not in titles:
                logger.info("Creating ledger tab %s", self.title)
                self._call(
                    "tab creation",
                    lambda s: s.spreadsheets().batchUpdate(
                        spreadsheetId=self.spreadsheet_id,
                        body={"requests": [{"addSheet": {"properties": {"title": self.title}}}]},
                    ),
                )
                current: list[str] = []
            else:
                result = self._call(
                    "header read",
                    lambda s: s.spreadsheets().values().get(
                        spreadsheetId=self.spreadsheet_id, range=self._range("1:1")
                    ),
                )
                values = result.get("values", [])
                current = list(values[0]) if values else []

            missing = [label for label in self._expected_headers if label not in current]
            if missing:
                headers = current + missing
                logger.info("Adding columns %s to ledger tab %s", missing, self.title)
                self._call(
                    "header write",
                    lambda s: s.spreadsheets().values().update(
                        spreadsheetId=self.spreadsheet_id,
                        range=self._range(f"A1:{_column_letter(len(headers))}1"),
                        valueInputOption="RAW",
                        body={"values": [headers]},
                    ),
                )
                current = headers

            self._headers = current
            return current

    def append_row(self, fields: Mapping[str, str]) -> None:
        headers = self.ensure_ready()
        row = [str(fields.get(label, "")) for label in headers]
        self._call(
            "append",
            lambda s: s.spreadsheets().values().append(
                spreadsheetId=self.spreadsheet_id,
                range=self._range("A1"),
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [row]},
            ),
        )

    def get_all_rows(self) -> list[LedgerRow]:
        headers = self.ensure_ready()
        result = self._call(
            "scan",
            lambda s: s.spreadsheets().values().get(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(f"A2:{_column_letter(len(headers))}"),
            ),
        )
        rows = []
        for offset, values in enumerate(result.get("values", [])):
            padded = list(values) + [""] * (len(headers) - len(values))
            rows.append(LedgerRow(self, offset + 2, dict(zip(headers, padded))))
        return rows

    def find_row(self, column: str, value: str) -> LedgerRow | None:
        return find_in_rows(self.get_all_rows(), column, value)

    def save_row(self, row: LedgerRow) -> None:
        headers = self.ensure_ready()
        values = [row.get(label) for label in headers]
        n = row.row_number
        self._call(
            "update",
            lambda s: s.spreadsheets().values().update(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(f"A{n}:{_column_letter(len(headers))}{n}"),
                valueInputOption="RAW",
                body={"values": [values]},
            ),
        )


@dataclass
class Ledger:
    """The two ledger tabs together with their column mappings."""

    orders: LedgerTab
    downloads: LedgerTab
    orders_schema: LedgerSchema
    downloads_schema: LedgerSchema


def create_memory_ledger(
    orders_tab: str = "Orders",
    downloads_tab: str = "Download_Links",
    order_overrides: Mapping[str, str] | None = None,
    download_overrides: Mapping[str, str] | None = None,
) -> Ledger:
    """Build a ledger backed by in-memory tabs."""
    o_schema = orders_schema(orders_tab, order_overrides)
    d_schema = download_links_schema(downloads_tab, download_overrides)
    return Ledger(
        orders=InMemoryLedgerTab(orders_tab, o_schema.headers),
        downloads=InMemoryLedgerTab(downloads_tab, d_schema.headers),
        orders_schema=o_schema,
        downloads_schema=d_schema,
    )


@lru_cache
def get_ledger() -> Ledger:
    """Get cached ledger singleton configured from settings.

    Returns:
        Ledger: Ledger with Orders and Download_Links tabs.
    """
    settings = get_settings()
    if settings.uses_memory_ledger:
        logger.warning("Using in-memory ledger; orders will not survive a restart")
        return create_memory_ledger(
            settings.ledger_orders_tab,
            settings.ledger_downloads_tab,
            settings.ledger_order_column_overrides,
            settings.ledger_download_column_overrides,
        )

    o_schema = orders_schema(settings.ledger_orders_tab, settings.ledger_order_column_overrides)
    d_schema = download_links_schema(settings.ledger_downloads_tab, settings.ledger_download_column_overrides)
    credentials = service_account.Credentials.from_service_account_info(
        {
            "type": "service_account",
            "client_email": settings.google_service_account_email,
            "private_key": settings.google_private_key,
            "token_uri": "https://oauth2.googleapis.com/token",
        },
        scopes=SHEETS_SCOPES,
    )
    return Ledger(
        orders=SheetsLedgerTab(
            credentials,
            settings.ledger_spreadsheet_id,
            o_schema.tab,
            o_schema.headers,
            settings.ledger_timeout_seconds,
        ),
        downloads=SheetsLedgerTab(
            credentials,
            settings.ledger_spreadsheet_id,
            d_schema.tab,
            d_schema.headers,
            settings.ledger_timeout_seconds,
        ),
        orders_schema=o_schema,
        downloads_schema=d_schema,
    )


async def run_blocking(
    func: Callable[..., T], *args: Any, timeout: float | None = None, settle: bool = False
) -> T:
    """Run a blocking call in a worker thread with a bounded wait.

    A worker thread cannot be interrupted, so a call that times out keeps
    running and may still complete its write. Writes whose outcome decides
    what the caller does next pass ``settle=True``: after the timeout they
    keep waiting and report the call's real result. Sheets calls end on their
    own through the per-request timeout and the retry limit.

    Args:
        func: Blocking callable (ledger, Stripe or Resend call).
        *args: Positional arguments for func.
        timeout: Seconds to wait; defaults to the ledger timeout setting.
        settle: Wait for the call to finish instead of abandoning it.

    Returns:
        The callable's return value.

    Raises:
        UpstreamError: If the call does not finish in time and settle is off.
    """
    if timeout is None:
        timeout = get_settings().ledger_timeout_seconds * MAX_RETRIES + MAX_WAIT_SECONDS
    call = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.wait_for(asyncio.shield(call), timeout=timeout)
    except asyncio.TimeoutError as e:
        name = getattr(func, "__qualname__", repr(func))
        if settle:
            logger.warning("Blocking call %s still running after %.1fs; waiting for it to finish", name, timeout)
            return await call
        # Collect the abandoned call's outcome so its error is not reported as unretrieved.
        call.add_done_callback(lambda done: done.cancelled() or done.exception())
        logger.error("Blocking call %s timed out after %.1fs", name, timeout)
        raise UpstreamError(f"{name} timed out") from e


async def check_ledger_connection() -> dict[str, Any]:
    """Check if the ledger is reachable.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        ledger = get_ledger()
        await run_blocking(ledger.orders.get_all_rows)
        return {"healthy": True}
    except Exception as e:
        return {"healthy": False, "error": str(e)}
