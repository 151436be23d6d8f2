"""
Razorpay adapter.

- Payment intent = Razorpay order; the order id is the client secret that
  Razorpay Checkout opens.
- Webhooks are signed with HMAC-SHA256 of the raw body using the webhook
  secret (X-Razorpay-Signature).
- Refunds go through the payments refund API.
"""

import hashlib
import hmac
import logging
import secrets
import time
from enum import Enum
from typing import Any, Dict, Optional

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError, ServerError
from starlette.concurrency import run_in_threadpool

from bhavan.config import settings
from bhavan.core.errors import NetworkError
from bhavan.services.payment_gateway.base import (
    GatewayConfig,
    PaymentGatewayAdapter,
    PaymentGatewayError,
    PaymentIntent,
    PaymentIntentParams,
    PaymentWebhookResult,
    RefundResult,
    RefundStatus,
    WebhookStatus,
    signatures_match,
    stringify_notes,
)

logger = logging.getLogger(__name__)

GATEWAY_NAME = "razorpay"

_RAZORPAY_ERRORS = (BadRequestError, GatewayError, ServerError)
_TRANSPORT_ERRORS = (requests.exceptions.Timeout, requests.exceptions.ConnectionError)


class RazorpayEvent(str, Enum):
    """Webhook events this adapter understands."""
    PAYMENT_AUTHORIZED = "payment.authorized"
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    ORDER_PAID = "order.paid"
    REFUND_CREATED = "refund.created"
    REFUND_PROCESSED = "refund.processed"


# Razorpay payment entity status -> canonical status
PAYMENT_STATUS_MAP: Dict[str, WebhookStatus] = {
    "captured": WebhookStatus.SUCCESS,
    "authorized": WebhookStatus.SUCCESS,
    "failed": WebhookStatus.FAILED,
    "refunded": WebhookStatus.REFUNDED,
}


class RazorpayAdapter(PaymentGatewayAdapter):
    gateway_name = GATEWAY_NAME

    def __init__(self, config: GatewayConfig, client: Optional[razorpay.Client] = None):
        super().__init__(config)
        base_url = config.additional_config.get("api_url", settings.RAZORPAY_API_URL)
        self.client = client or razorpay.Client(
            auth=(config.api_key, config.api_secret),
            base_url=base_url,
        )
        self.timeout = settings.RAZORPAY_TIMEOUT

    async def create_payment_intent(self, params: PaymentIntentParams) -> PaymentIntent:
        receipt = str(params.metadata.get("reference_number") or _generate_receipt())
        notes = stringify_notes({
            "customer_name": params.customer_name,
            "customer_email": params.customer_email,
            "description": params.description,
            **params.metadata,
        })
        order_data = {
            "amount": params.amount,
            "currency": params.currency,
            "receipt": receipt[:40],
            "notes": notes,
        }

        try:
            order = await run_in_threadpool(
                self.client.order.create, data=order_data, timeout=self.timeout
            )
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(
                f"Razorpay unreachable while creating order: {e}",
                retryable=True,
                context={"gateway": GATEWAY_NAME},
            ) from e
        except _RAZORPAY_ERRORS as e:
            logger.error(f"Failed to create Razorpay order for receipt {receipt}: {e}")
            raise PaymentGatewayError(
                f"Failed to create Razorpay order: {e}",
                code="ORDER_CREATION_FAILED",
                gateway_name=GATEWAY_NAME,
                original_error=e,
            ) from e

        order_id = order.get("id") if isinstance(order, dict) else None
        if not order_id:
            raise PaymentGatewayError(
                "Razorpay returned an order without an id",
                code="PAYMENT_INTENT_FAILED",
                gateway_name=GATEWAY_NAME,
            )

        logger.info(f"Created Razorpay order {order_id} for receipt {receipt}")

        return PaymentIntent(
            client_secret=order_id,
            amount=int(order.get("amount", params.amount)),
            currency=order.get("currency", params.currency),
            gateway=GATEWAY_NAME,
            metadata={
                "order_id": order_id,
                "receipt": order.get("receipt", receipt),
                "status": order.get("status"),
                "key_id": self.config.api_key,
            },
        )

    def verify_webhook(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        secret = self.config.webhook_secret
        if not secret or not signature:
            return False

        expected_signature = hmac.new(
            secret.encode(),
            raw_payload,
            hashlib.sha256
        ).hexdigest()
        return signatures_match(expected_signature, signature)

    async def process_webhook(self, payload: Dict[str, Any]) -> PaymentWebhookResult:
        raw_event = payload.get("event")
        try:
            event = RazorpayEvent(raw_event)
        except ValueError:
            raise PaymentGatewayError(
                f"Unsupported Razorpay webhook event: {raw_event}",
                code="UNSUPPORTED_EVENT",
                gateway_name=GATEWAY_NAME,
            )

        try:
            entities = payload["payload"]
            match event:
                case RazorpayEvent.REFUND_CREATED | RazorpayEvent.REFUND_PROCESSED:
                    refund = entities["refund"]["entity"]
                    payment = (entities.get("payment") or {}).get("entity") or {}
                    return PaymentWebhookResult(
                        transaction_id=refund["payment_id"],
                        status=WebhookStatus.REFUNDED,
                        amount=int(refund.get("amount", 0)),
                        currency=refund.get("currency", "INR"),
                        metadata={**_notes(payment), **_notes(refund)},
                        event=event.value,
                    )
                case (
                    RazorpayEvent.PAYMENT_AUTHORIZED
                    | RazorpayEvent.PAYMENT_CAPTURED
                    | RazorpayEvent.PAYMENT_FAILED
                    | RazorpayEvent.ORDER_PAID
                ):
                    payment = entities["payment"]["entity"]
                    return PaymentWebhookResult(
                        transaction_id=payment["id"],
                        status=PAYMENT_STATUS_MAP.get(payment.get("status"), WebhookStatus.PENDING),
                        amount=int(payment.get("amount", 0)),
                        currency=payment.get("currency", "INR"),
                        metadata=_notes(payment),
                        event=event.value,
                    )
                case _:
                    raise PaymentGatewayError(
                        f"Unhandled Razorpay webhook event: {event.value}",
                        code="UNSUPPORTED_EVENT",
                        gateway_name=GATEWAY_NAME,
                    )
        except (KeyError, TypeError, ValueError) as e:
            raise PaymentGatewayError(
                f"Malformed Razorpay webhook payload for {event.value}: {e}",
                code="WEBHOOK_PROCESSING_FAILED",
                gateway_name=GATEWAY_NAME,
                original_error=e,
            ) from e

    async def refund(self, transaction_id: str, amount: Optional[int] = None) -> RefundResult:
        data = {"amount": amount} if amount else {}

        try:
            refund = await run_in_threadpool(
                self.client.payment.refund, transaction_id, data, timeout=self.timeout
            )
        except _TRANSPORT_ERRORS as e:
            raise NetworkError(
                f"Razorpay unreachable while refunding {transaction_id}: {e}",
                retryable=True,
                context={"gateway": GATEWAY_NAME},
            ) from e
        except _RAZORPAY_ERRORS as e:
            logger.error(f"Failed to refund Razorpay payment {transaction_id}: {e}")
            raise PaymentGatewayError(
                f"Failed to refund payment {transaction_id}: {e}",
                code="REFUND_FAILED",
                gateway_name=GATEWAY_NAME,
                original_error=e,
            ) from e

        status = refund.get("status")
        if status == "processed":
            refund_status = RefundStatus.SUCCESS
        elif status == "failed":
            refund_status = RefundStatus.FAILED
        else:
            refund_status = RefundStatus.PENDING

        logger.info(f"Razorpay refund {refund.get('id')} for payment {transaction_id}: {status}")

        return RefundResult(
            refund_id=refund["id"],
            amount=refund.get("amount", amount),
            status=refund_status,
            message=f"Refund {status}",
        )


def _notes(entity: Dict[str, Any]) -> Dict[str, Any]:
    # Razorpay sends an empty list rather than an object when there are no notes
    notes = entity.get("notes")
    return dict(notes) if isinstance(notes, dict) else {}


def _generate_receipt() -> str:
    return f"rcpt_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
