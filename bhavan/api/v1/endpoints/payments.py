"""Payment gateway webhook endpoint."""
from typing import Optional

from fastapi import APIRouter, Header, Request

from bhavan.api.deps import DB, ActiveGatewayConfig
from bhavan.schemas.payment import WebhookResponse
from bhavan.services.webhook_service import WebhookService

router = APIRouter(tags=["Payments"])


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Payment gateway webhook handler",
    include_in_schema=False  # Hide from API docs
)
async def payment_webhook(
    request: Request,
    db: DB,
    gateway_config: ActiveGatewayConfig,
    x_razorpay_signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    x_webhook_signature: Optional[str] = Header(None, alias="X-Webhook-Signature"),
):
    """
    Settle a payment from a gateway notification.

    Responses:
    - 200 {received, processed}: every signed, well-formed delivery,
      including duplicates and events for unknown requests
    - 400: missing signature header or body is not JSON
    - 401: signature mismatch
    - 503: no payment gateway configured
    """
    body = await request.body()
    signature = x_razorpay_signature or stripe_signature or x_webhook_signature

    outcome = await WebhookService(db, gateway_config).handle(body, signature)
    return WebhookResponse(
        received=outcome.received,
        processed=outcome.processed,
        message=outcome.message,
    )
