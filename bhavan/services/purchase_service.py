"""
Checkout for paid services.

Creates an unpaid ServiceRequest and a gateway payment intent whose metadata
carries everything the webhook needs to find and settle the request. Nothing
here marks a payment confirmed.
"""

import logging
import re
import secrets
import time
import uuid
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bhavan.core.errors import NotFoundError, ServiceUnavailableError, ValidationError
from bhavan.core.retry import with_database_retry, with_network_retry
from bhavan.models.service import Service, ServiceTier
from bhavan.models.service_request import PaymentStatus, ServiceRequest, ServiceRequestStatus
from bhavan.services.affiliate_service import AffiliateService
from bhavan.services.payment_gateway import (
    GatewayConfig,
    PaymentGatewayAdapter,
    PaymentIntent,
    PaymentIntentParams,
    create_payment_gateway,
)
from bhavan.schemas.service import CustomerInfo, ServicePurchaseRequest

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class PurchaseResult(BaseModel):
    request_id: uuid.UUID
    reference_number: str
    payment_intent: PaymentIntent


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_reference_number() -> str:
    """SR-<base36 ms timestamp>-<6 random base36>, uppercase."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"SR-{_to_base36(int(time.time() * 1000))}-{suffix}"


def validate_customer(service_id: Optional[str], customer: CustomerInfo) -> Dict[str, str]:
    """Per-field error messages for a checkout form; empty when valid."""
    errors: Dict[str, str] = {}
    if not (service_id or "").strip():
        errors["serviceId"] = "Service selection is required"
    if not (customer.full_name or "").strip():
        errors["fullName"] = "Full name is required"
    if not EMAIL_PATTERN.match((customer.email or "").strip()):
        errors["email"] = "Valid email address is required"
    if not (customer.phone or "").strip():
        errors["phone"] = "Phone number is required"
    if not (customer.requirements or "").strip():
        errors["requirements"] = "Service requirements are required"
    return errors


def _parse_uuid(value: Optional[str], field: str, label: str) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid {label}", fields={field: f"Invalid {label}"})


class PurchaseService:
    """Purchase intent orchestration."""

    def __init__(self, db: AsyncSession, gateway_config: Optional[GatewayConfig]):
        self.db = db
        self.gateway_config = gateway_config
        self.affiliates = AffiliateService(db)

    def _adapter(self) -> PaymentGatewayAdapter:
        if self.gateway_config is None:
            raise ServiceUnavailableError("Payment gateway is not configured")
        return create_payment_gateway(self.gateway_config)

    async def _resolve_pricing(
        self,
        service_id: uuid.UUID,
        tier_id: Optional[uuid.UUID],
    ) -> Tuple[Service, Optional[ServiceTier], int, str]:
        service = await with_database_retry(
            lambda: self.db.get(Service, service_id),
            operation_name="load service",
        )
        if service is None or not service.is_active:
            raise NotFoundError("Service", service_id)

        if tier_id is None:
            return service, None, service.base_price, service.currency

        tier = await self.db.get(ServiceTier, tier_id)
        if tier is None or not tier.is_active:
            raise NotFoundError("Service tier", tier_id)
        if tier.service_id != service.id:
            raise ValidationError(
                "Service tier does not belong to the specified service",
                fields={"serviceTierId": "Service tier does not belong to the specified service"},
            )
        return service, tier, tier.price, tier.currency

    async def create_purchase(self, request: ServicePurchaseRequest) -> PurchaseResult:
        """
        Validate a checkout, persist the pending request and open a payment.

        Raises:
            ValidationError: Missing or malformed customer fields, foreign tier
            NotFoundError: Unknown or inactive service/tier
            ServiceUnavailableError: No payment gateway configured
            PaymentGatewayError: Gateway refused to create the payment
        """
        customer = request.customer
        errors = validate_customer(request.service_id, customer)
        if errors:
            raise ValidationError("Please correct the following fields", fields=errors)

        service_id = _parse_uuid(request.service_id, "serviceId", "service id")
        tier_id = _parse_uuid(request.service_tier_id, "serviceTierId", "service tier id")

        adapter = self._adapter()
        service, tier, amount, currency = await self._resolve_pricing(service_id, tier_id)

        affiliate_code = (request.affiliate_code or "").strip() or None
        affiliate_id = await self.affiliates.resolve_affiliate(affiliate_code)

        service_request = ServiceRequest(
            reference_number=generate_reference_number(),
            service_id=service.id,
            service_tier_id=tier.id if tier else None,
            customer_name=customer.full_name.strip(),
            customer_email=customer.email.strip().lower(),
            customer_phone=customer.phone.strip(),
            requirements=customer.requirements.strip(),
            payment_gateway=adapter.get_gateway_name(),
            payment_amount=amount,
            payment_currency=currency,
            payment_status=PaymentStatus.PENDING.value,
            status=ServiceRequestStatus.PENDING_CONTACT.value,
            affiliate_code=affiliate_code,
            affiliate_id=affiliate_id,
        )
        self.db.add(service_request)
        await self.db.flush()

        intent = await self._create_intent(adapter, service_request, service, tier)

        logger.info(
            f"Created service request {service_request.reference_number} for {service.name} "
            f"({amount} {currency}, affiliate {affiliate_id})"
        )
        return PurchaseResult(
            request_id=service_request.id,
            reference_number=service_request.reference_number,
            payment_intent=intent,
        )

    async def retry_payment(self, reference_number: str) -> PurchaseResult:
        """
        Open a new payment for a request that was never paid.

        A request still awaiting payment gets a fresh intent. A request whose
        payment failed is cancelled, so its details are copied into a new
        pending request with its own reference number.

        Raises:
            NotFoundError: Unknown reference number
            ValidationError: Payment already completed, or request cancelled
        """
        result = await self.db.execute(
            select(ServiceRequest).where(ServiceRequest.reference_number == reference_number)
        )
        original = result.scalar_one_or_none()
        if original is None:
            raise NotFoundError("Service request", reference_number)

        if original.payment_status in (PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value):
            raise ValidationError(
                "Payment already completed for this request",
                fields={"referenceNumber": "Payment already completed for this request"},
            )
        if original.payment_status == PaymentStatus.PENDING.value and \
                original.status == ServiceRequestStatus.CANCELLED.value:
            raise ValidationError(
                "This service request has been cancelled",
                fields={"referenceNumber": "This service request has been cancelled"},
            )

        adapter = self._adapter()
        service = await self.db.get(Service, original.service_id)
        if service is None:
            raise NotFoundError("Service", original.service_id)
        tier = None
        if original.service_tier_id:
            tier = await self.db.get(ServiceTier, original.service_tier_id)

        service_request = original
        if original.payment_status == PaymentStatus.FAILED.value:
            service_request = ServiceRequest(
                reference_number=generate_reference_number(),
                service_id=original.service_id,
                service_tier_id=original.service_tier_id,
                customer_name=original.customer_name,
                customer_email=original.customer_email,
                customer_phone=original.customer_phone,
                requirements=original.requirements,
                payment_gateway=adapter.get_gateway_name(),
                payment_amount=original.payment_amount,
                payment_currency=original.payment_currency,
                payment_status=PaymentStatus.PENDING.value,
                status=ServiceRequestStatus.PENDING_CONTACT.value,
                affiliate_code=original.affiliate_code,
                affiliate_id=original.affiliate_id,
                notes=f"Payment retry of {original.reference_number}",
            )
            self.db.add(service_request)
        else:
            service_request.payment_gateway = adapter.get_gateway_name()
        await self.db.flush()

        intent = await self._create_intent(adapter, service_request, service, tier)
        logger.info(
            f"Created retry payment intent for {service_request.reference_number} "
            f"(requested as {original.reference_number})"
        )
        return PurchaseResult(
            request_id=service_request.id,
            reference_number=service_request.reference_number,
            payment_intent=intent,
        )

    async def _create_intent(
        self,
        adapter: PaymentGatewayAdapter,
        service_request: ServiceRequest,
        service: Service,
        tier: Optional[ServiceTier],
    ) -> PaymentIntent:
        metadata: Dict[str, Any] = {
            "service_request_id": str(service_request.id),
            "reference_number": service_request.reference_number,
            "service_id": str(service.id),
            "service_tier_id": str(tier.id) if tier else None,
            "affiliate_id": service_request.affiliate_id,
            "affiliate_code": service_request.affiliate_code,
        }
        description = f"{service.name} - {tier.name}" if tier else service.name
        params = PaymentIntentParams(
            amount=service_request.payment_amount,
            currency=service_request.payment_currency,
            customer_email=service_request.customer_email,
            customer_name=service_request.customer_name,
            description=description,
            metadata=metadata,
        )
        # Transport failures only; gateway rejections surface immediately
        return await with_network_retry(
            lambda: adapter.create_payment_intent(params),
            operation_name=f"create {adapter.get_gateway_name()} payment intent",
        )
