"""Operator endpoints for service requests."""
from typing import Optional
import uuid
from math import ceil
from datetime import datetime

from fastapi import APIRouter, Query

from bhavan.api.deps import DB, ActiveGatewayConfig, AdminUser, StaffUser
from bhavan.models.service import ServiceCategory
from bhavan.models.service_request import PaymentStatus, ServiceRequest, ServiceRequestStatus
from bhavan.schemas.service import (
    RefundRequest,
    RefundResponse,
    ServiceRequestDetail,
    ServiceRequestListResponse,
    ServiceRequestResponse,
    ServiceRequestUpdate,
    StatusHistoryResponse,
)
from bhavan.services.service_request_service import ServiceRequestService
from bhavan.services.service_request_state_machine import get_allowed_transitions

router = APIRouter(tags=["Admin - Service Requests"])


def _build_detail(sr: ServiceRequest) -> ServiceRequestDetail:
    base = ServiceRequestResponse.model_validate(sr)
    return ServiceRequestDetail(
        **base.model_dump(),
        status_history=[StatusHistoryResponse.model_validate(h) for h in sr.status_history],
        allowed_transitions=get_allowed_transitions(sr.status),
    )


@router.get("", response_model=ServiceRequestListResponse)
async def list_service_requests(
    db: DB,
    user: StaffUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[ServiceRequestStatus] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    service_category: Optional[ServiceCategory] = Query(None),
    assigned_provider_id: Optional[uuid.UUID] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
):
    """
    Get paginated list of service requests.
    CA and lawyer accounts only see requests assigned to them.
    """
    service = ServiceRequestService(db)
    requests, total = await service.list_requests(
        viewer=user,
        status=status.value if status else None,
        payment_status=payment_status.value if payment_status else None,
        service_category=service_category.value if service_category else None,
        assigned_provider_id=assigned_provider_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
        skip=(page - 1) * size,
        limit=size,
    )

    return ServiceRequestListResponse(
        items=[ServiceRequestResponse.model_validate(r) for r in requests],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/{request_id}", response_model=ServiceRequestDetail)
async def get_service_request(request_id: uuid.UUID, db: DB, user: StaffUser):
    sr = await ServiceRequestService(db).get_by_id(request_id, viewer=user)
    return _build_detail(sr)


@router.patch("/{request_id}", response_model=ServiceRequestDetail)
async def update_service_request(
    request_id: uuid.UUID,
    data: ServiceRequestUpdate,
    db: DB,
    user: AdminUser,
):
    """
    Update status, assigned provider and/or notes.

    Status changes follow the fulfilment workflow; assigning a provider to a
    request awaiting contact moves it to team_assigned.
    """
    sr = await ServiceRequestService(db).update_request(request_id, data, actor=user)
    return _build_detail(sr)


@router.post("/{request_id}/refund", response_model=RefundResponse)
async def refund_service_request(
    request_id: uuid.UUID,
    data: RefundRequest,
    db: DB,
    user: AdminUser,
    gateway_config: ActiveGatewayConfig,
):
    """
    Ask the gateway to refund the payment.

    The request and any commission are cancelled when the gateway confirms
    the refund by webhook.
    """
    refund = await ServiceRequestService(db).initiate_refund(
        request_id, gateway_config, amount=data.amount, reason=data.reason
    )
    return RefundResponse(
        refund_id=refund.refund_id,
        amount=refund.amount,
        status=refund.status.value,
        message=refund.message,
    )
