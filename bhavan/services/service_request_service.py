"""Service request queries and operator actions."""
import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bhavan.core.errors import AuthorizationError, NotFoundError, ValidationError
from bhavan.models.service import Service, ServiceTier
from bhavan.models.service_request import (
    PaymentStatus,
    ServiceRequest,
    ServiceRequestStatus,
)
from bhavan.models.user import PROVIDER_ROLES, User, UserRole
from bhavan.schemas.service import (
    PaymentSummary,
    ServiceRequestStatusResponse,
    ServiceRequestUpdate,
    ServiceSummary,
    TimelineEntry,
)
from bhavan.services.notification_service import CustomerEvent, NotificationService
from bhavan.services.payment_gateway import (
    GatewayConfig,
    RefundResult,
    create_payment_gateway,
)
from bhavan.services.service_request_state_machine import (
    get_next_step,
    get_status_description,
    get_status_label,
    transition_service_request,
)

logger = logging.getLogger(__name__)

# Roles that only see requests assigned to them
ASSIGNED_ONLY_ROLES = (UserRole.CA.value, UserRole.LAWYER.value)


class ServiceRequestService:

    def __init__(self, db: AsyncSession, notifications: Optional[NotificationService] = None):
        self.db = db
        self.notifications = notifications or NotificationService(db)

    # ==================== QUERIES ====================

    async def get_by_reference(self, reference_number: str) -> ServiceRequest:
        result = await self.db.execute(
            select(ServiceRequest)
            .options(
                selectinload(ServiceRequest.service),
                selectinload(ServiceRequest.service_tier),
                selectinload(ServiceRequest.status_history),
            )
            .where(ServiceRequest.reference_number == reference_number)
            .execution_options(populate_existing=True)
        )
        service_request = result.scalar_one_or_none()
        if service_request is None:
            raise NotFoundError("Service request", reference_number)
        return service_request

    async def get_by_id(self, request_id: uuid.UUID, viewer: Optional[User] = None) -> ServiceRequest:
        result = await self.db.execute(
            select(ServiceRequest)
            .options(
                selectinload(ServiceRequest.service),
                selectinload(ServiceRequest.status_history),
            )
            .where(ServiceRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        service_request = result.scalar_one_or_none()
        if service_request is None:
            raise NotFoundError("Service request", request_id)

        if viewer is not None and viewer.role in ASSIGNED_ONLY_ROLES \
                and service_request.assigned_provider_id != viewer.id:
            raise AuthorizationError("This service request is not assigned to you")
        return service_request

    async def get_status(self, reference_number: str) -> ServiceRequestStatusResponse:
        """Customer-facing status with a chronological timeline."""
        service_request = await self.get_by_reference(reference_number)
        service: Service = service_request.service
        tier: Optional[ServiceTier] = service_request.service_tier

        timeline = [
            TimelineEntry(
                status="created",
                label=get_status_label("created"),
                timestamp=service_request.created_at,
                description="Service request created",
            )
        ]
        for entry in service_request.status_history:
            timeline.append(TimelineEntry(
                status=entry.new_status,
                label=get_status_label(entry.new_status),
                timestamp=entry.created_at,
                description=entry.notes or get_status_description(entry.new_status),
            ))

        return ServiceRequestStatusResponse(
            reference_number=service_request.reference_number,
            status=service_request.status,
            status_label=get_status_label(service_request.status),
            status_description=get_status_description(service_request.status),
            next_step=get_next_step(service_request.status),
            service=ServiceSummary(
                id=service.id,
                name=service.name,
                category=service.category,
                tier_name=tier.name if tier else None,
            ),
            customer_name=service_request.customer_name,
            customer_email=service_request.customer_email,
            payment=PaymentSummary(
                amount=service_request.payment_amount,
                currency=service_request.payment_currency,
                status=service_request.payment_status,
                gateway=service_request.payment_gateway,
                completed_at=service_request.payment_completed_at,
            ),
            timeline=timeline,
            created_at=service_request.created_at,
            updated_at=service_request.updated_at,
        )

    async def list_requests(
        self,
        viewer: Optional[User] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        service_category: Optional[str] = None,
        assigned_provider_id: Optional[uuid.UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[ServiceRequest], int]:
        """Filtered page of requests, newest first, with the total count."""
        query = select(ServiceRequest).join(Service, ServiceRequest.service_id == Service.id)

        if viewer is not None and viewer.role in ASSIGNED_ONLY_ROLES:
            query = query.where(ServiceRequest.assigned_provider_id == viewer.id)
        if status:
            query = query.where(ServiceRequest.status == status)
        if payment_status:
            query = query.where(ServiceRequest.payment_status == payment_status)
        if service_category:
            query = query.where(Service.category == service_category)
        if assigned_provider_id:
            query = query.where(ServiceRequest.assigned_provider_id == assigned_provider_id)
        if date_from:
            query = query.where(ServiceRequest.created_at >= date_from)
        if date_to:
            query = query.where(ServiceRequest.created_at <= date_to)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    ServiceRequest.reference_number.ilike(pattern),
                    ServiceRequest.customer_name.ilike(pattern),
                    ServiceRequest.customer_email.ilike(pattern),
                )
            )

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(ServiceRequest.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # ==================== OPERATOR ACTIONS ====================

    async def _get_provider(self, provider_id: uuid.UUID) -> User:
        provider = await self.db.get(User, provider_id)
        if provider is None:
            raise ValidationError(
                "Assigned provider not found",
                fields={"assigned_provider_id": "Assigned provider not found"},
            )
        if not provider.is_active:
            raise ValidationError(
                "Assigned provider is not active",
                fields={"assigned_provider_id": "Assigned provider is not active"},
            )
        if provider.role not in PROVIDER_ROLES:
            raise ValidationError(
                "Assigned user is not a valid service provider",
                fields={"assigned_provider_id": "Assigned user is not a valid service provider"},
            )
        return provider

    async def update_request(
        self,
        request_id: uuid.UUID,
        data: ServiceRequestUpdate,
        actor: User,
    ) -> ServiceRequest:
        """
        Apply an operator update: status change, provider assignment, notes.

        Assigning a provider to a pending_contact request also moves it to
        team_assigned through the state machine. Customer emails go out after
        the commit.

        Raises:
            ValidationError: Nothing to update, unpaid request, same status, bad provider
            InvalidTransitionError: Status change not allowed
            NotFoundError: Unknown request
        """
        fields_set = data.model_fields_set
        if data.status is None and data.assigned_provider_id is None and "notes" not in fields_set:
            raise ValidationError(
                "At least one field (status, assigned_provider_id, or notes) must be provided",
            )

        service_request = await self.get_by_id(request_id)
        old_status = service_request.status
        events: List[CustomerEvent] = []
        provider: Optional[User] = None

        # Fulfilment starts only once the payment webhook has settled the request
        if (data.status is not None or data.assigned_provider_id is not None) and \
                service_request.payment_status != PaymentStatus.COMPLETED.value:
            raise ValidationError(
                "Payment not yet confirmed",
                fields={"status": "Payment not yet confirmed"},
            )

        if data.status is not None and data.status.value == old_status:
            raise ValidationError(
                "Please choose a different status",
                fields={"status": "Please choose a different status"},
            )

        if data.assigned_provider_id is not None:
            provider = await self._get_provider(data.assigned_provider_id)

        if data.status is not None:
            transition_service_request(
                self.db, service_request, data.status.value,
                changed_by=actor.id,
                notes=data.notes,
            )

        if provider is not None:
            service_request.assigned_provider_id = provider.id
            if service_request.status == ServiceRequestStatus.PENDING_CONTACT.value:
                transition_service_request(
                    self.db, service_request, ServiceRequestStatus.TEAM_ASSIGNED.value,
                    changed_by=actor.id,
                    notes=f"Assigned to {provider.display_name}",
                )

        if "notes" in fields_set:
            service_request.notes = data.notes

        await self.db.commit()
        logger.info(
            f"Service request {service_request.reference_number} updated by {actor.email}: "
            f"{old_status} -> {service_request.status}"
        )

        new_status = service_request.status
        if new_status == ServiceRequestStatus.TEAM_ASSIGNED.value or (provider and new_status == old_status):
            events.append(CustomerEvent.TEAM_ASSIGNED)
        elif new_status == ServiceRequestStatus.COMPLETED.value:
            events.append(CustomerEvent.COMPLETED)
        elif new_status != old_status:
            events.append(CustomerEvent.STATUS_UPDATED)

        service_name = service_request.service.name
        for event in events:
            await self.notifications.notify_customer(service_request, service_name, event, note=data.notes)
        if provider is not None:
            await self.notifications.notify_provider(service_request, service_name)

        return await self.get_by_id(request_id)

    async def initiate_refund(
        self,
        request_id: uuid.UUID,
        gateway_config: Optional[GatewayConfig],
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        """
        Ask the gateway to refund a completed payment.

        The request and commission are only cancelled when the gateway's
        refund webhook arrives.
        """
        service_request = await self.get_by_id(request_id)

        if service_request.payment_status != PaymentStatus.COMPLETED.value \
                or not service_request.payment_transaction_id:
            raise ValidationError(
                "Only completed payments can be refunded",
                fields={"payment_status": f"Payment is {service_request.payment_status}"},
            )
        if amount is not None and amount > service_request.payment_amount:
            raise ValidationError(
                "Refund amount exceeds the amount paid",
                fields={"amount": f"Maximum refundable amount is {service_request.payment_amount}"},
            )
        if gateway_config is None or gateway_config.provider != service_request.payment_gateway:
            raise ValidationError(
                f"Payment was taken by '{service_request.payment_gateway}', which is not the active gateway",
                fields={"payment_gateway": "Gateway that took the payment is not active"},
            )

        if amount is None:
            amount = service_request.payment_amount

        adapter = create_payment_gateway(gateway_config)
        refund = await adapter.refund(service_request.payment_transaction_id, amount)
        logger.info(
            f"Refund {refund.refund_id} ({refund.status.value}) requested for "
            f"{service_request.reference_number}"
            + (f": {reason}" if reason else "")
        )
        return refund
