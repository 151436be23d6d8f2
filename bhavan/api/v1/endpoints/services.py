"""Public service catalogue, checkout and request tracking endpoints."""
import uuid
from typing import List

from fastapi import APIRouter
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from bhavan.api.deps import DB, ActiveGatewayConfig
from bhavan.core.errors import NotFoundError
from bhavan.models.service import Service
from bhavan.schemas.service import (
    PaymentIntentResponse,
    ServicePurchaseRequest,
    ServicePurchaseResponse,
    ServiceRequestStatusResponse,
    ServiceResponse,
    ServiceTierResponse,
)
from bhavan.services.purchase_service import PurchaseResult, PurchaseService
from bhavan.services.service_request_service import ServiceRequestService

router = APIRouter(tags=["Services"])


def _build_service_response(service: Service) -> ServiceResponse:
    """Service with only its active tiers."""
    return ServiceResponse(
        id=service.id,
        name=service.name,
        description=service.description,
        category=service.category,
        base_price=service.base_price,
        currency=service.currency,
        tiers=[ServiceTierResponse.model_validate(t) for t in service.tiers if t.is_active],
    )


def _build_purchase_response(result: PurchaseResult) -> ServicePurchaseResponse:
    intent = result.payment_intent
    return ServicePurchaseResponse(
        request_id=result.request_id,
        reference_number=result.reference_number,
        payment_intent=PaymentIntentResponse(
            client_secret=intent.client_secret,
            amount=intent.amount,
            currency=intent.currency,
            gateway=intent.gateway,
        ),
    )


@router.get("", response_model=List[ServiceResponse])
async def list_services(db: DB):
    """List active services with their active tiers."""
    result = await db.execute(
        select(Service)
        .options(selectinload(Service.tiers))
        .where(Service.is_active == True)  # noqa: E712
        .order_by(Service.category, Service.name)
    )
    return [_build_service_response(s) for s in result.scalars().all()]


@router.get("/{service_id}", response_model=ServiceResponse)
async def get_service(service_id: uuid.UUID, db: DB):
    result = await db.execute(
        select(Service)
        .options(selectinload(Service.tiers))
        .where(Service.id == service_id, Service.is_active == True)  # noqa: E712
    )
    service = result.scalar_one_or_none()
    if service is None:
        raise NotFoundError("Service", service_id)
    return _build_service_response(service)


@router.post("/purchase", response_model=ServicePurchaseResponse)
async def purchase_service(
    data: ServicePurchaseRequest,
    db: DB,
    gateway_config: ActiveGatewayConfig,
):
    """
    Start a paid service purchase.

    Creates the service request in pending payment state and returns the
    client secret the browser uses to complete payment with the gateway.
    """
    result = await PurchaseService(db, gateway_config).create_purchase(data)
    return _build_purchase_response(result)


@router.get("/requests/{reference_number}", response_model=ServiceRequestStatusResponse)
async def get_service_request_status(reference_number: str, db: DB):
    """Track a service request by its reference number."""
    return await ServiceRequestService(db).get_status(reference_number)


@router.post("/requests/{reference_number}/retry-payment", response_model=ServicePurchaseResponse)
async def retry_payment(
    reference_number: str,
    db: DB,
    gateway_config: ActiveGatewayConfig,
):
    """Open a new payment for a request that has not been paid."""
    result = await PurchaseService(db, gateway_config).retry_payment(reference_number)
    return _build_purchase_response(result)
