"""Pydantic schemas for services, purchases and service requests."""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from bhavan.models.service_request import ServiceRequestStatus
from bhavan.schemas.base import BaseResponseSchema, CamelModel


# ==================== CATALOGUE ====================

class ServiceTierResponse(BaseResponseSchema):
    id: UUID
    name: str
    description: Optional[str] = None
    price: int
    currency: str
    features: Optional[list] = None
    sort_order: int = 0


class ServiceResponse(BaseResponseSchema):
    id: UUID
    name: str
    description: Optional[str] = None
    category: str
    base_price: int
    currency: str
    tiers: List[ServiceTierResponse] = []


# ==================== PURCHASE ====================

class CustomerInfo(CamelModel):
    """Customer fields as typed at checkout. Validated by the purchase service."""
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    requirements: Optional[str] = None


class ServicePurchaseRequest(CamelModel):
    service_id: Optional[str] = None
    service_tier_id: Optional[str] = None
    customer: CustomerInfo = Field(default_factory=CustomerInfo)
    affiliate_code: Optional[str] = None


class PaymentIntentResponse(CamelModel):
    client_secret: str
    amount: int
    currency: str
    gateway: str


class ServicePurchaseResponse(CamelModel):
    request_id: UUID
    reference_number: str
    payment_intent: PaymentIntentResponse


# ==================== STATUS QUERY ====================

class TimelineEntry(CamelModel):
    status: str
    label: str
    timestamp: datetime
    description: str


class ServiceSummary(CamelModel):
    id: UUID
    name: str
    category: str
    tier_name: Optional[str] = None


class PaymentSummary(CamelModel):
    amount: int
    currency: str
    status: str
    gateway: str
    completed_at: Optional[datetime] = None


class ServiceRequestStatusResponse(CamelModel):
    reference_number: str
    status: str
    status_label: str
    status_description: str
    next_step: str
    service: ServiceSummary
    customer_name: str
    customer_email: str
    payment: PaymentSummary
    timeline: List[TimelineEntry]
    created_at: datetime
    updated_at: datetime


# ==================== OPERATOR ====================

class ServiceRequestUpdate(BaseModel):
    status: Optional[ServiceRequestStatus] = None
    assigned_provider_id: Optional[UUID] = None
    notes: Optional[str] = Field(None, max_length=2000)


class StatusHistoryResponse(BaseResponseSchema):
    id: UUID
    old_status: Optional[str] = None
    new_status: str
    changed_by_user_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime


class ServiceRequestResponse(BaseResponseSchema):
    id: UUID
    reference_number: str
    service_id: UUID
    service_tier_id: Optional[UUID] = None
    customer_name: str
    customer_email: str
    customer_phone: str
    requirements: str
    payment_gateway: str
    payment_amount: int
    payment_currency: str
    payment_status: str
    payment_transaction_id: Optional[str] = None
    payment_completed_at: Optional[datetime] = None
    status: str
    assigned_provider_id: Optional[UUID] = None
    affiliate_code: Optional[str] = None
    affiliate_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ServiceRequestDetail(ServiceRequestResponse):
    status_history: List[StatusHistoryResponse] = []
    allowed_transitions: List[str] = []


class ServiceRequestListResponse(BaseModel):
    items: List[ServiceRequestResponse]
    total: int
    page: int
    size: int
    pages: int


class RefundRequest(BaseModel):
    amount: Optional[int] = Field(None, gt=0, description="Minor units; full refund when omitted")
    reason: Optional[str] = Field(None, max_length=500)


class RefundResponse(BaseModel):
    refund_id: str
    amount: int
    status: str
    message: Optional[str] = None
