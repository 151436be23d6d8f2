# Models module
from bhavan.models.user import User, UserRole
from bhavan.models.affiliate import (
    Affiliate,
    AffiliateStatus,
    TrackingEvent,
    TrackingEventType,
    NO_AFFILIATE_ID,
)
from bhavan.models.service import Service, ServiceTier, ServiceCategory
from bhavan.models.service_request import (
    ServiceRequest,
    ServiceRequestStatusHistory,
    ServiceRequestStatus,
    PaymentStatus,
)
from bhavan.models.commission import (
    CommissionConfig,
    AffiliateCommission,
    CommissionType,
    CommissionStatus,
)
from bhavan.models.payment_gateway_config import PaymentGatewayConfig

__all__ = [
    "User",
    "UserRole",
    "Affiliate",
    "AffiliateStatus",
    "TrackingEvent",
    "TrackingEventType",
    "NO_AFFILIATE_ID",
    "Service",
    "ServiceTier",
    "ServiceCategory",
    "ServiceRequest",
    "ServiceRequestStatusHistory",
    "ServiceRequestStatus",
    "PaymentStatus",
    "CommissionConfig",
    "AffiliateCommission",
    "CommissionType",
    "CommissionStatus",
    "PaymentGatewayConfig",
]
