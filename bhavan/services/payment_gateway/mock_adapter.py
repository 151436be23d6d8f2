"""
Mock payment gateway for local development and tests.

No network calls. The client secret embeds the intent as base64 JSON so the
mock checkout page can show it and post back a webhook:

    {"event": "payment.success", "data": {"transaction_id": ..., "amount": ...,
     "currency": ..., "metadata": {...}}}

signed with generate_mock_webhook_signature(body, webhook_secret) in the
X-Webhook-Signature header.
"""

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from bhavan.services.payment_gateway.base import (
    PaymentGatewayAdapter,
    PaymentGatewayError,
    PaymentIntent,
    PaymentIntentParams,
    PaymentWebhookResult,
    RefundResult,
    RefundStatus,
    WebhookStatus,
    signatures_match,
)

logger = logging.getLogger(__name__)

GATEWAY_NAME = "mock"
CLIENT_SECRET_PREFIX = "mock_secret_"
SIGNATURE_PREFIX = "mock_sig_"


class MockEvent(str, Enum):
    PAYMENT_SUCCESS = "payment.success"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_REFUNDED = "payment.refunded"
    PAYMENT_PENDING = "payment.pending"


class MockPaymentAdapter(PaymentGatewayAdapter):
    gateway_name = GATEWAY_NAME

    async def create_payment_intent(self, params: PaymentIntentParams) -> PaymentIntent:
        try:
            transaction_id = _generate_id("mock")
            intent_data = {
                "transaction_id": transaction_id,
                "amount": params.amount,
                "currency": params.currency,
                "customer_email": params.customer_email,
                "customer_name": params.customer_name,
                "description": params.description,
                "metadata": params.metadata,
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
            encoded = base64.b64encode(json.dumps(intent_data, default=str).encode()).decode()
        except (TypeError, ValueError) as e:
            raise PaymentGatewayError(
                f"Failed to create mock payment intent: {e}",
                code="MOCK_INTENT_CREATION_FAILED",
                gateway_name=GATEWAY_NAME,
                original_error=e,
            ) from e

        logger.info(f"Created mock payment intent {transaction_id} ({params.amount} {params.currency})")

        return PaymentIntent(
            client_secret=f"{CLIENT_SECRET_PREFIX}{encoded}",
            amount=params.amount,
            currency=params.currency,
            gateway=GATEWAY_NAME,
            metadata={"transaction_id": transaction_id, "mode": self.config.mode.value},
        )

    def verify_webhook(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        secret = self.config.webhook_secret
        if not secret or not signature:
            return False
        expected = generate_mock_webhook_signature(raw_payload, secret)
        return signatures_match(expected, signature)

    async def process_webhook(self, payload: Dict[str, Any]) -> PaymentWebhookResult:
        raw_event = payload.get("event")
        try:
            event = MockEvent(raw_event)
            data = payload["data"]
            match event:
                case MockEvent.PAYMENT_SUCCESS:
                    status = WebhookStatus.SUCCESS
                case MockEvent.PAYMENT_FAILED:
                    status = WebhookStatus.FAILED
                case MockEvent.PAYMENT_REFUNDED:
                    status = WebhookStatus.REFUNDED
                case MockEvent.PAYMENT_PENDING:
                    status = WebhookStatus.PENDING
                case _:
                    raise ValueError(f"Unknown event type: {raw_event}")

            return PaymentWebhookResult(
                transaction_id=data["transaction_id"],
                status=status,
                amount=int(data.get("amount", 0)),
                currency=data.get("currency", "INR"),
                metadata=data.get("metadata") or {},
                event=event.value,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PaymentGatewayError(
                f"Failed to process mock webhook: {e}",
                code="MOCK_WEBHOOK_PROCESSING_FAILED",
                gateway_name=GATEWAY_NAME,
                original_error=e,
            ) from e

    async def refund(self, transaction_id: str, amount: Optional[int] = None) -> RefundResult:
        if not transaction_id:
            raise PaymentGatewayError(
                "Transaction id is required for a refund",
                code="MOCK_REFUND_FAILED",
                gateway_name=GATEWAY_NAME,
            )
        refund_id = _generate_id("mock_refund")
        logger.info(f"Mock refund {refund_id} for {transaction_id}")
        return RefundResult(
            refund_id=refund_id,
            amount=amount,
            status=RefundStatus.SUCCESS,
            message="Mock refund processed successfully",
        )


# ==================== HELPERS ====================

def _generate_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def generate_mock_webhook_signature(raw_payload: bytes, webhook_secret: str) -> str:
    digest = hmac.new(webhook_secret.encode(), raw_payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest[:32]}"


def decode_mock_client_secret(client_secret: str) -> Dict[str, Any]:
    """Recover the intent data embedded in a mock client secret."""
    if not client_secret or not client_secret.startswith(CLIENT_SECRET_PREFIX):
        raise PaymentGatewayError(
            "Not a mock client secret",
            code="INVALID_CLIENT_SECRET",
            gateway_name=GATEWAY_NAME,
        )
    try:
        return json.loads(base64.b64decode(client_secret[len(CLIENT_SECRET_PREFIX):]))
    except (ValueError, TypeError) as e:
        raise PaymentGatewayError(
            f"Invalid mock client secret: {e}",
            code="INVALID_CLIENT_SECRET",
            gateway_name=GATEWAY_NAME,
            original_error=e,
        ) from e


def build_mock_webhook_payload(client_secret: str, event: MockEvent = MockEvent.PAYMENT_SUCCESS) -> Dict[str, Any]:
    """Webhook body the mock checkout posts back for an intent."""
    intent = decode_mock_client_secret(client_secret)
    return {
        "event": event.value,
        "data": {
            "transaction_id": intent["transaction_id"],
            "amount": intent["amount"],
            "currency": intent["currency"],
            "metadata": intent.get("metadata") or {},
        },
    }
