"""Unit tests for request middleware helpers."""

import pytest
from fastapi.testclient import TestClient

from src.api.middleware.latency_logging import redact_path


class TestRedactPath:
    """Tests for download token redaction in logged paths."""

    def test_download_token_masked(self) -> None:
        assert redact_path("/download/3f2c9a1e-0000-4000-8000-123456789abc") == "/download/{token}"

    def test_other_paths_untouched(self) -> None:
        assert redact_path("/webhook/provider") == "/webhook/provider"
        assert redact_path("/health") == "/health"


class TestRequestSizeLimit:
    """Tests for the request body size limit."""

    def test_oversized_body_rejected(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        from src.core.config import get_settings

        monkeypatch.setenv("MAX_REQUEST_BODY_SIZE", "100")
        get_settings.cache_clear()

        response = client.post(
            "/create-payment-session",
            content=b"x" * 200,
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 413
        assert response.json()["error"] == "request_too_large"
