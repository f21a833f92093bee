"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LEDGER_BACKEND", "memory")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")
os.environ.setdefault("DOMAIN", "https://api.example.test")
os.environ.setdefault("FRONTEND_URL", "https://shop.example.test")
os.environ.setdefault("FULFILLMENT_RETRY_DELAY_SECONDS", "0")
os.environ.setdefault("INVOICE_PREFIX", "SNK")

from src.core import rate_limiter  # noqa: E402
from src.core.catalog import get_catalog  # noqa: E402
from src.core.config import get_settings  # noqa: E402
from src.core.ledger import Ledger, create_memory_ledger, get_ledger  # noqa: E402
from src.models.catalog import ProductCatalog  # noqa: E402
from src.services import fulfillment_service  # noqa: E402
from src.services.invoice_number_service import get_invoice_allocator  # noqa: E402


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Give every test fresh settings, ledger, catalog and queues."""
    for cached in (get_settings, get_ledger, get_catalog, get_invoice_allocator):
        cached.cache_clear()
    rate_limiter._rate_limiter = None
    fulfillment_service._fulfillment_queue = None
    yield
    for cached in (get_settings, get_ledger, get_catalog, get_invoice_allocator):
        cached.cache_clear()
    rate_limiter._rate_limiter = None
    fulfillment_service._fulfillment_queue = None


@pytest.fixture
def test_settings() -> Any:
    """Provide the current test settings."""
    return get_settings()


@pytest.fixture
def ledger() -> Ledger:
    """Provide the in-memory ledger the application uses."""
    return get_ledger()


@pytest.fixture
def fresh_ledger() -> Ledger:
    """Provide an in-memory ledger not shared with the application."""
    return create_memory_ledger()


@pytest.fixture
def catalog() -> ProductCatalog:
    """Provide the product catalog shipped with the service."""
    return get_catalog()


@pytest.fixture
def downloads_dir(tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> Any:
    """Point DOWNLOADS_DIR at a temp directory holding the ebook files."""
    directory = tmp_path / "ebooks"
    directory.mkdir()
    for name in ("product_2.pdf", "product_4.pdf"):
        (directory / name).write_bytes(b"%PDF-1.4 test ebook " + name.encode())
    monkeypatch.setenv("DOWNLOADS_DIR", str(directory))
    get_settings.cache_clear()
    return directory


@pytest.fixture
def mock_resend() -> Generator[MagicMock, None, None]:
    """Patch the Resend client so no email leaves the process.

    Yields:
        MagicMock: The patched ``resend.Emails.send``.
    """
    with patch("src.services.email_service.resend.Emails.send", return_value={"id": "email_123"}) as send:
        yield send


@pytest.fixture
def client(mock_resend: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    The fulfillment worker runs inside the client's event loop; the ledger
    is the in-memory backend.

    Args:
        mock_resend: Patched email sender.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client
