"""Post-payment fulfillment: download tokens, invoice PDF and email.

Runs outside the webhook response cycle. Jobs are retried with backoff and
the outcome is written to the order's Fulfillment column, so a paid order
is never lost even when fulfillment fails ("payment recorded, fulfillment
pending").
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.api.middleware.error_handler import UpstreamError
from src.core.catalog import get_catalog
from src.core.config import get_settings
from src.core.ledger import Ledger, LedgerRow, get_ledger, run_blocking
from src.models.catalog import ProductCatalog
from src.models.order import FulfillmentStatus, OrderItem, OrderRecord, OrderStatus
from src.services.checkout_gateway import CheckoutGateway, GatewayLineItem
from src.services.download_token_service import DownloadTokenService
from src.services.email_service import EmailService
from src.services.invoice_renderer import InvoiceRenderer
from src.services.order_builder import order_from_row

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY_SECONDS = 60


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FulfillmentError(Exception):
    """A fulfillment stage failed; the job may be retried."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        self.message = message
        super().__init__(f"{stage}: {message}")


@dataclass
class FulfillmentJob:
    """Work item for one paid session.

    Progress is kept on the job so a retry skips stages that already
    succeeded and never issues tokens or sends the email twice.
    """

    session_id: str
    attempts: int = 0
    order: OrderRecord | None = None
    tokens: dict[int, str] = field(default_factory=dict)
    download_links: dict[int, str] = field(default_factory=dict)
    tokens_issued: bool = False
    invoice_pdf: bytes | None = None
    invoice_failed: bool = False
    email_sent: bool = False


def items_from_gateway(line_items: list[GatewayLineItem], catalog: ProductCatalog) -> tuple[OrderItem, ...]:
    """Rebuild order items from provider line items.

    Lines without a known ``productId`` in their metadata (such as the home
    delivery line) are skipped.
    """
    items = []
    for line in line_items:
        raw_id = line.metadata.get("productId", "")
        product = catalog.get(int(raw_id)) if raw_id.isdigit() else None
        if product is None:
            continue
        quantity = max(line.quantity, 1)
        items.append(
            OrderItem(
                product_id=product.id,
                name=product.name,
                unit_price_cents=line.amount_total // quantity,
                quantity=quantity,
                size=line.metadata.get("size") or None,
            )
        )
    return tuple(items)


class FulfillmentService:
    """Runs the fulfillment stages for one job."""

    def __init__(
        self,
        ledger: Ledger | None = None,
        catalog: ProductCatalog | None = None,
        gateway: CheckoutGateway | None = None,
        token_service: DownloadTokenService | None = None,
        email_service: EmailService | None = None,
        renderer: InvoiceRenderer | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.settings = get_settings()
        self.ledger = ledger or get_ledger()
        self.catalog = catalog or get_catalog()
        self.gateway = gateway or CheckoutGateway()
        self.token_service = token_service or DownloadTokenService(self.ledger, self.catalog, clock)
        self.email_service = email_service or EmailService()
        self.renderer = renderer or InvoiceRenderer()
        self._clock = clock

    def _col(self, field_name: str) -> str:
        return self.ledger.orders_schema.label(field_name)

    async def _find_row(self, session_id: str) -> LedgerRow | None:
        return await run_blocking(self.ledger.orders.find_row, self._col("session_id"), session_id)

    async def load_order(self, session_id: str) -> OrderRecord:
        """Read the order for a session from the ledger.

        Falls back to the provider's line items if the stored items are
        unreadable.

        Raises:
            FulfillmentError: If the order cannot be loaded.
        """
        try:
            row = await self._find_row(session_id)
        except UpstreamError as e:
            raise FulfillmentError("load", e.message) from e
        if row is None:
            raise FulfillmentError("load", f"No order row for session {session_id}")

        try:
            return order_from_row(row, self.ledger.orders_schema, self.catalog)
        except ValueError as e:
            logger.warning("Order row for %s unreadable (%s); using provider line items", session_id, e)

        try:
            line_items = await run_blocking(
                self.gateway.list_line_items, session_id, timeout=self.settings.stripe_timeout_seconds * 3
            )
        except UpstreamError as e:
            raise FulfillmentError("load", e.message) from e

        items = items_from_gateway(line_items, self.catalog)
        if not items:
            raise FulfillmentError("load", f"No purchasable items found for session {session_id}")
        return order_from_row(row, self.ledger.orders_schema, self.catalog, items=items)

    async def fulfill(self, job: FulfillmentJob) -> None:
        """Run the remaining stages of a job.

        Raises:
            FulfillmentError: On a retryable stage failure.
        """
        if job.order is None:
            job.order = await self.load_order(job.session_id)
            if job.order.fulfillment_status == FulfillmentStatus.COMPLETED.value:
                logger.info("Order %s already fulfilled; skipping", job.session_id)
                return
        order = job.order

        if order.status != OrderStatus.PAID:
            logger.warning("Fulfilling %s whose row is not marked paid (%s)", order.session_id, order.status.value)

        if order.has_digital_items and not job.tokens_issued:
            try:
                tokens = await self.token_service.issue_for_order(order, issued=job.tokens)
            except UpstreamError as e:
                raise FulfillmentError("tokens", e.message) from e
            job.download_links = {pid: self.token_service.download_url(token) for pid, token in tokens.items()}
            job.tokens_issued = True

        if job.invoice_pdf is None and not job.invoice_failed:
            try:
                job.invoice_pdf = await asyncio.to_thread(self.renderer.render, order, self._clock())
            except Exception:
                # Not retried; the email goes out without the invoice.
                logger.exception("Invoice rendering failed for %s", order.invoice_number)
                job.invoice_failed = True

        if not job.email_sent:
            result = await self.email_service.send_order_confirmation(
                order, job.invoice_pdf, job.download_links, self.catalog
            )
            if not result.get("success"):
                raise FulfillmentError("email", str(result.get("error", "send failed")))
            job.email_sent = True

        if job.invoice_failed:
            await self.record_status(job.session_id, f"{FulfillmentStatus.FAILED.value}:invoice")
        else:
            await self.record_status(job.session_id, FulfillmentStatus.COMPLETED.value)
        logger.info("Order %s fulfilled (invoice %s)", order.session_id, order.invoice_number)

    async def record_status(self, session_id: str, value: str) -> None:
        """Write the fulfillment outcome to the order row. Never raises."""
        try:
            row = await self._find_row(session_id)
            if row is None:
                logger.error("Cannot record fulfillment %s: no row for %s", value, session_id)
                return
            row.set(self._col("fulfillment_status"), value)
            await run_blocking(row.save, settle=True)
        except UpstreamError as e:
            logger.error("Could not record fulfillment %s for %s: %s", value, session_id, e.message)

    async def pending_sessions(self) -> list[str]:
        """Session ids of paid orders whose fulfillment never finished."""
        rows = await run_blocking(self.ledger.orders.get_all_rows)
        status_col = self._col("status")
        fulfillment_col = self._col("fulfillment_status")
        return [
            row.get(self._col("session_id"))
            for row in rows
            if row.get(status_col) == OrderStatus.PAID.value
            and row.get(fulfillment_col) == FulfillmentStatus.PENDING.value
        ]


class FulfillmentQueue:
    """In-process queue that runs fulfillment jobs in a background task."""

    def __init__(
        self,
        service_factory: Callable[[], FulfillmentService] = FulfillmentService,
        max_attempts: int | None = None,
        retry_delay_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self._service_factory = service_factory
        self.max_attempts = max_attempts or settings.fulfillment_max_attempts
        self.retry_delay_seconds = (
            settings.fulfillment_retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds
        )
        self._queue: asyncio.Queue[FulfillmentJob] | None = None
        self._worker_task: asyncio.Task | None = None
        self._recovery_task: asyncio.Task | None = None
        # Sessions queued or running; a session is never in the queue twice.
        self._active: set[str] = set()

    @property
    def queue(self) -> asyncio.Queue[FulfillmentJob]:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    @property
    def pending(self) -> int:
        return self.queue.qsize()

    def submit(self, session_id: str) -> bool:
        """Queue fulfillment for a paid session. Returns immediately.

        Returns:
            bool: False if the session is already queued or running.
        """
        if session_id in self._active:
            logger.info("Fulfillment for %s already queued", session_id)
            return False
        self._active.add(session_id)
        self.queue.put_nowait(FulfillmentJob(session_id=session_id))
        logger.info("Fulfillment queued for %s", session_id)
        return True

    async def start(self, recover: bool = True) -> None:
        """Start the worker, optionally re-queueing unfinished paid orders."""
        if self._worker_task is None:
            # A fresh queue binds to the running event loop.
            self._queue = asyncio.Queue()
            self._worker_task = asyncio.create_task(self._worker())
            logger.info("Fulfillment worker started")
        if recover and self._recovery_task is None:
            self._recovery_task = asyncio.create_task(self._recover())

    async def stop(self) -> None:
        """Stop the worker. Queued jobs stay pending in the ledger."""
        for task in (self._recovery_task, self._worker_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        if self._queue is not None and self._queue.qsize():
            logger.warning("Fulfillment worker stopped with %d queued jobs", self._queue.qsize())
        self._recovery_task = None
        self._worker_task = None
        self._queue = None
        self._active.clear()
        logger.info("Fulfillment worker stopped")

    async def _recover(self) -> None:
        try:
            sessions = await self._service_factory().pending_sessions()
        except UpstreamError as e:
            logger.warning("Could not scan for unfinished fulfillment: %s", e.message)
            return
        requeued = sum(1 for session_id in sessions if self.submit(session_id))
        if requeued:
            logger.info("Re-queued fulfillment for %d paid orders", requeued)

    async def _worker(self) -> None:
        queue = self.queue
        while True:
            job = await queue.get()
            try:
                await self.run(job)
            except Exception:
                logger.exception("Unexpected error fulfilling %s", job.session_id)
            finally:
                self._active.discard(job.session_id)
                queue.task_done()

    async def run(self, job: FulfillmentJob) -> bool:
        """Run one job with retries.

        Returns:
            bool: True if the job completed.
        """
        service = self._service_factory()
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(FulfillmentError),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.retry_delay_seconds, max=MAX_RETRY_DELAY_SECONDS),
                reraise=True,
            ):
                with attempt:
                    job.attempts += 1
                    if job.attempts > 1:
                        logger.info("Retrying fulfillment for %s (attempt %d)", job.session_id, job.attempts)
                    await service.fulfill(job)
        except FulfillmentError as e:
            logger.error(
                "Fulfillment for %s failed at %s after %d attempts: %s",
                job.session_id,
                e.stage,
                job.attempts,
                e.message,
            )
            await service.record_status(job.session_id, f"{FulfillmentStatus.FAILED.value}:{e.stage}")
            return False
        return True

    async def drain(self) -> None:
        """Run every queued job inline. Used when no worker is running."""
        queue = self.queue
        while not queue.empty():
            job = queue.get_nowait()
            try:
                await self.run(job)
            finally:
                self._active.discard(job.session_id)
                queue.task_done()


# Global singleton instance
_fulfillment_queue: FulfillmentQueue | None = None


def get_fulfillment_queue() -> FulfillmentQueue:
    """Get or create the global fulfillment queue."""
    global _fulfillment_queue
    if _fulfillment_queue is None:
        _fulfillment_queue = FulfillmentQueue()
    return _fulfillment_queue


async def init_fulfillment_queue() -> FulfillmentQueue:
    """Start the fulfillment worker. Call at app startup."""
    queue = get_fulfillment_queue()
    await queue.start()
    return queue


async def shutdown_fulfillment_queue() -> None:
    """Stop the fulfillment worker. Call at app shutdown."""
    if _fulfillment_queue:
        await _fulfillment_queue.stop()
