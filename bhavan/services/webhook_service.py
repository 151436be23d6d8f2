"""
Payment webhook ingestion.

    signature present -> gateway configured -> verify -> parse -> claim payment status -> settle

The claim is a conditional UPDATE on service_requests.payment_status. Only the
delivery whose UPDATE matches a row applies the settlement side effects
(history, tracking event, commission); redeliveries and concurrent duplicates
match nothing and are answered with processed=false. Notifications go out
after the commit and can never undo it.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from bhavan.core.errors import (
    AuthenticationError,
    ServiceUnavailableError,
    ValidationError,
)
from bhavan.core.retry import with_database_retry
from bhavan.models.affiliate import TrackingEventType
from bhavan.models.service import Service
from bhavan.models.service_request import PaymentStatus, ServiceRequest
from bhavan.services.affiliate_service import AffiliateService, is_attributed
from bhavan.services.commission_engine import CommissionService
from bhavan.services.notification_service import CustomerEvent, NotificationService
from bhavan.services.payment_gateway import (
    GatewayConfig,
    PaymentWebhookResult,
    WebhookStatus,
    create_payment_gateway,
)
from bhavan.services.service_request_state_machine import apply_settlement_transition

logger = logging.getLogger(__name__)


class WebhookOutcome(BaseModel):
    received: bool = True
    processed: bool
    message: Optional[str] = None


class WebhookService:
    """Applies verified gateway notifications to service requests."""

    def __init__(
        self,
        db: AsyncSession,
        gateway_config: Optional[GatewayConfig],
        notifications: Optional[NotificationService] = None,
    ):
        self.db = db
        self.gateway_config = gateway_config
        self.notifications = notifications or NotificationService(db)
        self.affiliates = AffiliateService(db)
        self.commissions = CommissionService(db)

    async def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Process one webhook delivery.

        Raises:
            ValidationError: Missing signature or body is not a JSON object (400)
            ServiceUnavailableError: No gateway configured (503)
            AuthenticationError: Signature does not match (401)
            PaymentGatewayError: Adapter could not parse the event (500)
        """
        if not signature:
            raise ValidationError(
                "Missing webhook signature",
                fields={"signature": "Signature header is required"},
            )

        if self.gateway_config is None:
            raise ServiceUnavailableError("Payment gateway is not configured")

        adapter = create_payment_gateway(self.gateway_config)

        if not adapter.verify_webhook(raw_body, signature):
            logger.warning(
                f"Invalid {adapter.get_gateway_name()} webhook signature "
                f"({len(raw_body)} byte body)"
            )
            raise AuthenticationError("Invalid webhook signature")

        payload = _parse_body(raw_body)
        result = await adapter.process_webhook(payload)
        logger.info(
            f"Webhook {result.event or result.status.value} for transaction "
            f"{result.transaction_id} via {adapter.get_gateway_name()}"
        )

        service_request_id = _service_request_id(result)
        if service_request_id is None:
            logger.warning(f"Webhook for {result.transaction_id} has no usable service_request_id")
            return WebhookOutcome(processed=False, message="No service request in metadata")

        service_request = await with_database_retry(
            lambda: self.db.get(ServiceRequest, service_request_id),
            operation_name="load service request for webhook",
        )
        if service_request is None:
            logger.warning(f"Webhook references unknown service request {service_request_id}")
            return WebhookOutcome(processed=False, message="Service request not found")

        match result.status:
            case WebhookStatus.SUCCESS:
                applied = await self._apply_success(service_request, result)
            case WebhookStatus.FAILED:
                applied = await self._apply_failure(service_request, result)
            case WebhookStatus.REFUNDED:
                applied = await self._apply_refund(service_request, result)
            case WebhookStatus.PENDING:
                applied = await self._apply_pending(service_request, result)

        if not applied:
            logger.info(
                f"Webhook {result.status.value} for {service_request.reference_number} "
                f"already processed (payment_status={service_request.payment_status})"
            )
            return WebhookOutcome(processed=False, message="Already processed")

        return WebhookOutcome(processed=True)

    # ==================== CLAIM ====================

    async def _claim(
        self,
        service_request: ServiceRequest,
        from_statuses: List[PaymentStatus],
        **values: Any,
    ) -> bool:
        """
        Conditionally update payment fields. True only for the caller whose
        UPDATE matched, which makes it the one delivery allowed to settle.
        """
        result = await self.db.execute(
            update(ServiceRequest)
            .where(
                ServiceRequest.id == service_request.id,
                ServiceRequest.payment_status.in_([s.value for s in from_statuses]),
            )
            .values(updated_at=datetime.now(timezone.utc), **values)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(service_request)
        return result.rowcount == 1

    # ==================== OUTCOMES ====================

    async def _apply_success(self, service_request: ServiceRequest, result: PaymentWebhookResult) -> bool:
        claimed = await self._claim(
            service_request,
            [PaymentStatus.PENDING],
            payment_status=PaymentStatus.COMPLETED.value,
            payment_transaction_id=result.transaction_id,
            payment_completed_at=datetime.now(timezone.utc),
        )
        if not claimed:
            return False

        if result.amount and result.amount != service_request.payment_amount:
            logger.warning(
                f"Webhook amount {result.amount} differs from stored amount "
                f"{service_request.payment_amount} for {service_request.reference_number}"
            )

        apply_settlement_transition(
            self.db, service_request, PaymentStatus.COMPLETED.value,
            notes="Payment completed successfully",
        )

        service = await self.db.get(Service, service_request.service_id)
        affiliate_id = service_request.affiliate_id
        if not affiliate_id:
            affiliate_id = await self.affiliates.resolve_affiliate(result.metadata.get("affiliate_code"))

        if is_attributed(affiliate_id):
            await self.affiliates.record_event(
                affiliate_id,
                TrackingEventType.PAYMENT,
                metadata={
                    "service_request_id": str(service_request.id),
                    "amount": service_request.payment_amount,
                    "currency": service_request.payment_currency,
                    "type": "service_purchase",
                },
            )
            await self.commissions.record_commission(
                affiliate_id,
                service_request.id,
                service_request.payment_amount,
                service_request.payment_currency,
                category=service.category if service else None,
                notes=f"Commission for {service.name if service else 'service'} purchase",
            )

        await self.db.commit()
        logger.info(
            f"Payment {result.transaction_id} confirmed for {service_request.reference_number}"
        )

        service_name = service.name if service else "Service"
        await self._notify_safely(
            "customer confirmation",
            self.notifications.notify_customer(service_request, service_name, CustomerEvent.PAYMENT_CONFIRMED),
        )
        await self._notify_safely(
            "provider notification",
            self.notifications.notify_provider(service_request, service_name),
        )
        return True

    async def _apply_failure(self, service_request: ServiceRequest, result: PaymentWebhookResult) -> bool:
        claimed = await self._claim(
            service_request,
            [PaymentStatus.PENDING],
            payment_status=PaymentStatus.FAILED.value,
            payment_transaction_id=result.transaction_id,
        )
        if not claimed:
            return False

        apply_settlement_transition(
            self.db, service_request, PaymentStatus.FAILED.value,
            notes="Payment failed",
        )
        service = await self.db.get(Service, service_request.service_id)
        await self.db.commit()
        logger.info(f"Payment {result.transaction_id} failed for {service_request.reference_number}")

        await self._notify_safely(
            "payment failure email",
            self.notifications.notify_customer(
                service_request, service.name if service else "Service", CustomerEvent.PAYMENT_FAILED
            ),
        )
        return True

    async def _apply_refund(self, service_request: ServiceRequest, result: PaymentWebhookResult) -> bool:
        claimed = await self._claim(
            service_request,
            [PaymentStatus.COMPLETED],
            payment_status=PaymentStatus.REFUNDED.value,
            payment_transaction_id=result.transaction_id,
        )
        if not claimed:
            return False

        apply_settlement_transition(
            self.db, service_request, PaymentStatus.REFUNDED.value,
            notes="Payment refunded",
        )
        await self.commissions.cancel_for_service_request(
            service_request.id,
            notes="Commission cancelled due to payment refund",
        )
        service = await self.db.get(Service, service_request.service_id)
        await self.db.commit()
        logger.info(f"Payment {result.transaction_id} refunded for {service_request.reference_number}")

        await self._notify_safely(
            "refund email",
            self.notifications.notify_customer(
                service_request, service.name if service else "Service", CustomerEvent.REFUNDED
            ),
        )
        return True

    async def _apply_pending(self, service_request: ServiceRequest, result: PaymentWebhookResult) -> bool:
        claimed = await self._claim(
            service_request,
            [PaymentStatus.PENDING],
            payment_transaction_id=result.transaction_id,
        )
        if claimed:
            await self.db.commit()
        return claimed

    async def _notify_safely(self, label: str, notification) -> None:
        try:
            await notification
        except Exception as e:
            logger.error(f"Webhook {label} failed: {e}")


def _parse_body(raw_body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Webhook body is not valid JSON", fields={"body": "Invalid JSON"})
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object", fields={"body": "Expected an object"})
    return payload


def _service_request_id(result: PaymentWebhookResult) -> Optional[uuid.UUID]:
    raw = result.metadata.get("service_request_id")
    if not raw:
        return None
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return None
