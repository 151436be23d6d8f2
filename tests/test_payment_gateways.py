"""
Tests for payment gateway adapters and the adapter factory.
"""

import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest
import requests
from razorpay.errors import BadRequestError

from bhavan.core.errors import NetworkError
from bhavan.services.payment_gateway import (
    GatewayConfig,
    PaymentGatewayError,
    PaymentIntentParams,
    RefundStatus,
    WebhookStatus,
    create_payment_gateway,
    get_supported_providers,
    is_provider_supported,
)
from bhavan.services.payment_gateway.mock_adapter import (
    MockEvent,
    MockPaymentAdapter,
    build_mock_webhook_payload,
    decode_mock_client_secret,
    generate_mock_webhook_signature,
)
from bhavan.services.payment_gateway.razorpay_adapter import RazorpayAdapter

WEBHOOK_SECRET = "whsec_unit"


def _config(provider: str, **overrides) -> GatewayConfig:
    values = {
        "provider": provider,
        "api_key": "key_123",
        "api_secret": "secret_123",
        "webhook_secret": WEBHOOK_SECRET,
    }
    values.update(overrides)
    return GatewayConfig(**values)


def _params(**overrides) -> PaymentIntentParams:
    values = {
        "amount": 5000000,
        "currency": "INR",
        "customer_email": "ravi@example.com",
        "customer_name": "Ravi Kumar",
        "description": "Property Valuation",
        "metadata": {"service_request_id": "sr-1", "reference_number": "SR-ABC-123456"},
    }
    values.update(overrides)
    return PaymentIntentParams(**values)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

class TestFactory:
    def test_supported_providers(self):
        assert get_supported_providers() == ["razorpay", "mock"]
        assert is_provider_supported("razorpay")
        assert not is_provider_supported("stripe")

    def test_creates_adapter(self):
        assert isinstance(create_payment_gateway(_config("mock")), MockPaymentAdapter)

    def test_unknown_provider(self):
        with pytest.raises(PaymentGatewayError) as exc_info:
            create_payment_gateway(_config("bitcoin"))
        assert exc_info.value.gateway_code == "INVALID_CONFIG"

    def test_known_but_unsupported_provider(self):
        with pytest.raises(PaymentGatewayError) as exc_info:
            create_payment_gateway(_config("stripe"))
        assert exc_info.value.gateway_code == "UNSUPPORTED_PROVIDER"

    def test_missing_credentials(self):
        with pytest.raises(PaymentGatewayError):
            create_payment_gateway(_config("mock", api_secret=""))
        with pytest.raises(PaymentGatewayError):
            create_payment_gateway(_config("mock", webhook_secret=None))


# ---------------------------------------------------------------------------
# Mock gateway
# ---------------------------------------------------------------------------

class TestMockGateway:
    @pytest.mark.asyncio
    async def test_intent_round_trips_to_webhook(self):
        adapter = MockPaymentAdapter(_config("mock"))
        intent = await adapter.create_payment_intent(_params())

        assert intent.gateway == "mock"
        assert intent.client_secret.startswith("mock_secret_")
        decoded = decode_mock_client_secret(intent.client_secret)
        assert decoded["amount"] == 5000000

        payload = build_mock_webhook_payload(intent.client_secret, MockEvent.PAYMENT_SUCCESS)
        result = await adapter.process_webhook(payload)
        assert result.status == WebhookStatus.SUCCESS
        assert result.transaction_id == decoded["transaction_id"]
        assert result.metadata["service_request_id"] == "sr-1"

    def test_signature(self):
        adapter = MockPaymentAdapter(_config("mock"))
        body = b'{"event": "payment.success"}'
        signature = generate_mock_webhook_signature(body, WEBHOOK_SECRET)

        assert adapter.verify_webhook(body, signature)
        assert not adapter.verify_webhook(body + b" ", signature)
        assert not adapter.verify_webhook(body, None)
        assert not adapter.verify_webhook(body, generate_mock_webhook_signature(body, "other"))
        assert adapter.verify_webhook(body, "mock_sig_" + "ÿ" * 32) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event,status", [
        ("payment.failed", WebhookStatus.FAILED),
        ("payment.refunded", WebhookStatus.REFUNDED),
        ("payment.pending", WebhookStatus.PENDING),
    ])
    async def test_event_mapping(self, event, status):
        adapter = MockPaymentAdapter(_config("mock"))
        result = await adapter.process_webhook({"event": event, "data": {"transaction_id": "mock_1"}})
        assert result.status == status

    @pytest.mark.asyncio
    async def test_unknown_event(self):
        adapter = MockPaymentAdapter(_config("mock"))
        with pytest.raises(PaymentGatewayError):
            await adapter.process_webhook({"event": "payment.exploded", "data": {}})

    def test_bad_client_secret(self):
        with pytest.raises(PaymentGatewayError):
            decode_mock_client_secret("pi_not_mock")

    @pytest.mark.asyncio
    async def test_refund(self):
        adapter = MockPaymentAdapter(_config("mock"))
        refund = await adapter.refund("mock_1", 1000)
        assert refund.status == RefundStatus.SUCCESS
        assert refund.amount == 1000

    @pytest.mark.asyncio
    async def test_full_refund_amount_unreported(self):
        refund = await MockPaymentAdapter(_config("mock")).refund("mock_1")
        assert refund.amount is None


# ---------------------------------------------------------------------------
# Razorpay
# ---------------------------------------------------------------------------

def _razorpay(client: MagicMock = None) -> RazorpayAdapter:
    return RazorpayAdapter(_config("razorpay"), client=client or MagicMock())


def _razorpay_payment_event(event: str, status: str) -> dict:
    return {
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": "pay_123",
                    "status": status,
                    "amount": 5000000,
                    "currency": "INR",
                    "notes": {"service_request_id": "sr-1", "affiliate_code": "partner-1"},
                }
            }
        },
    }


class TestRazorpayGateway:
    @pytest.mark.asyncio
    async def test_creates_order(self):
        client = MagicMock()
        client.order.create.return_value = {
            "id": "order_abc", "amount": 5000000, "currency": "INR",
            "receipt": "SR-ABC-123456", "status": "created",
        }
        intent = await _razorpay(client).create_payment_intent(_params())

        assert intent.client_secret == "order_abc"
        assert intent.metadata["key_id"] == "key_123"
        data = client.order.create.call_args.kwargs["data"]
        assert data["receipt"] == "SR-ABC-123456"
        assert data["notes"]["service_request_id"] == "sr-1"
        assert all(isinstance(v, str) for v in data["notes"].values())

    @pytest.mark.asyncio
    async def test_provider_rejection(self):
        client = MagicMock()
        client.order.create.side_effect = BadRequestError("Amount exceeds maximum")
        with pytest.raises(PaymentGatewayError) as exc_info:
            await _razorpay(client).create_payment_intent(_params())
        assert exc_info.value.gateway_code == "ORDER_CREATION_FAILED"

    @pytest.mark.asyncio
    async def test_transport_failure_is_retryable(self):
        client = MagicMock()
        client.order.create.side_effect = requests.exceptions.ConnectTimeout("timed out")
        with pytest.raises(NetworkError) as exc_info:
            await _razorpay(client).create_payment_intent(_params())
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_order_without_id(self):
        client = MagicMock()
        client.order.create.return_value = {"amount": 5000000}
        with pytest.raises(PaymentGatewayError) as exc_info:
            await _razorpay(client).create_payment_intent(_params())
        assert exc_info.value.gateway_code == "PAYMENT_INTENT_FAILED"

    def test_signature(self):
        body = json.dumps(_razorpay_payment_event("payment.captured", "captured")).encode()
        signature = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()

        adapter = _razorpay()
        assert adapter.verify_webhook(body, signature)
        assert not adapter.verify_webhook(body, "0" * 64)

    @pytest.mark.parametrize("signature", ["ÿ" * 64, "sig☃", "\udcff" * 8])
    def test_non_ascii_signature_rejected(self, signature):
        assert _razorpay().verify_webhook(b"{}", signature) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event,status,expected", [
        ("payment.captured", "captured", WebhookStatus.SUCCESS),
        ("order.paid", "captured", WebhookStatus.SUCCESS),
        ("payment.failed", "failed", WebhookStatus.FAILED),
        ("payment.authorized", "created", WebhookStatus.PENDING),
    ])
    async def test_payment_events(self, event, status, expected):
        result = await _razorpay().process_webhook(_razorpay_payment_event(event, status))
        assert result.status == expected
        assert result.transaction_id == "pay_123"
        assert result.metadata["service_request_id"] == "sr-1"

    @pytest.mark.asyncio
    async def test_refund_event(self):
        payload = {
            "event": "refund.processed",
            "payload": {
                "refund": {"entity": {"id": "rfnd_1", "payment_id": "pay_123", "amount": 1000, "notes": []}},
                "payment": {"entity": {"id": "pay_123", "notes": {"service_request_id": "sr-1"}}},
            },
        }
        result = await _razorpay().process_webhook(payload)
        assert result.status == WebhookStatus.REFUNDED
        assert result.transaction_id == "pay_123"
        assert result.metadata == {"service_request_id": "sr-1"}

    @pytest.mark.asyncio
    async def test_unsupported_event(self):
        with pytest.raises(PaymentGatewayError) as exc_info:
            await _razorpay().process_webhook({"event": "subscription.charged", "payload": {}})
        assert exc_info.value.gateway_code == "UNSUPPORTED_EVENT"

    @pytest.mark.asyncio
    async def test_malformed_payload(self):
        with pytest.raises(PaymentGatewayError) as exc_info:
            await _razorpay().process_webhook({"event": "payment.captured", "payload": {}})
        assert exc_info.value.gateway_code == "WEBHOOK_PROCESSING_FAILED"

    @pytest.mark.asyncio
    async def test_refund(self):
        client = MagicMock()
        client.payment.refund.return_value = {"id": "rfnd_1", "amount": 2500, "status": "processed"}

        refund = await _razorpay(client).refund("pay_123", 2500)

        assert refund.status == RefundStatus.SUCCESS
        assert refund.amount == 2500
        args = client.payment.refund.call_args.args
        assert args == ("pay_123", {"amount": 2500})
