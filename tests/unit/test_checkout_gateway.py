"""Unit tests for the Stripe Checkout adapter."""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from src.api.middleware.error_handler import SignatureError, UpstreamError
from src.services.checkout_gateway import CheckoutGateway


@pytest.fixture
def mock_stripe() -> MagicMock:
    """Stripe module double that keeps the real exception classes."""
    mock = MagicMock()
    mock.StripeError = stripe.StripeError
    mock.SignatureVerificationError = stripe.SignatureVerificationError
    return mock


@pytest.fixture
def gateway(mock_stripe: MagicMock) -> CheckoutGateway:
    with patch("src.services.checkout_gateway.get_stripe", return_value=mock_stripe):
        return CheckoutGateway()


class TestCreateSession:
    """Tests for create_session."""

    def test_creates_payment_mode_session(self, gateway: CheckoutGateway, mock_stripe: MagicMock) -> None:
        mock_stripe.checkout.Session.create.return_value = MagicMock(
            id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123"
        )

        session = gateway.create_session(
            [{"price_data": {}, "quantity": 1}],
            "https://shop/success.html?session_id={CHECKOUT_SESSION_ID}",
            "https://shop/cancel.html",
            {"productIds": "1"},
            customer_email="ada@example.com",
        )

        assert session.session_id == "cs_test_123"
        assert session.redirect_url == "https://checkout.stripe.com/c/pay/cs_test_123"
        kwargs = mock_stripe.checkout.Session.create.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["customer_email"] == "ada@example.com"
        assert kwargs["metadata"] == {"productIds": "1"}

    def test_stripe_error_becomes_upstream_error(self, gateway: CheckoutGateway, mock_stripe: MagicMock) -> None:
        mock_stripe.checkout.Session.create.side_effect = stripe.APIConnectionError("network down")

        with pytest.raises(UpstreamError):
            gateway.create_session([], "s", "c", {})


class TestVerifyWebhookSignature:
    """Tests for verify_webhook_signature."""

    def test_missing_header(self, gateway: CheckoutGateway) -> None:
        with pytest.raises(SignatureError, match="Missing"):
            gateway.verify_webhook_signature(b"{}", None)

    def test_invalid_signature(self, gateway: CheckoutGateway, mock_stripe: MagicMock) -> None:
        mock_stripe.Webhook.construct_event.side_effect = stripe.SignatureVerificationError("bad", "t=1,v1=x")

        with pytest.raises(SignatureError, match="Invalid signature"):
            gateway.verify_webhook_signature(b"{}", "t=1,v1=x")

    def test_invalid_payload(self, gateway: CheckoutGateway, mock_stripe: MagicMock) -> None:
        mock_stripe.Webhook.construct_event.side_effect = ValueError("not json")

        with pytest.raises(SignatureError, match="Invalid payload"):
            gateway.verify_webhook_signature(b"nope", "t=1,v1=x")

    def test_valid_event_returned_as_dict(self, gateway: CheckoutGateway, mock_stripe: MagicMock) -> None:
        event = MagicMock()
        event.to_dict.return_value = {"id": "evt_1", "type": "checkout.session.completed"}
        mock_stripe.Webhook.construct_event.return_value = event

        result = gateway.verify_webhook_signature(b"{}", "t=1,v1=x")

        assert result["type"] == "checkout.session.completed"
        args = mock_stripe.Webhook.construct_event.call_args.args
        assert args == (b"{}", "t=1,v1=x", "whsec_test_webhook_secret")


class TestListLineItems:
    """Tests for list_line_items."""

    def test_reads_product_metadata(self, gateway: CheckoutGateway, mock_stripe: MagicMock) -> None:
        result = MagicMock()
        result.to_dict.return_value = {
            "data": [
                {
                    "description": "Senkisem T-Shirt (M)",
                    "amount_total": 5998,
                    "quantity": 2,
                    "price": {"product": {"metadata": {"productId": "1", "size": "M"}}},
                },
                {"description": "Home Delivery", "amount_total": 1500, "quantity": 1, "price": {"product": "prod_x"}},
            ]
        }
        mock_stripe.checkout.Session.list_line_items.return_value = result

        items = gateway.list_line_items("cs_test_123")

        assert items[0].metadata == {"productId": "1", "size": "M"}
        assert items[0].amount_total == 5998
        assert items[1].metadata == {}

    def test_expire_session_failure(self, gateway: CheckoutGateway, mock_stripe: MagicMock) -> None:
        mock_stripe.checkout.Session.expire.side_effect = stripe.InvalidRequestError("gone", "session")

        with pytest.raises(UpstreamError):
            gateway.expire_session("cs_test_123")
