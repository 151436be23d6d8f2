from fastapi import APIRouter

from bhavan.api.v1.endpoints import (
    # Catalogue, checkout and tracking by reference
    services,
    # Gateway notifications
    payments,
    # Affiliate attribution
    tracking,
    # Operator
    admin_service_requests,
    admin_payment_gateways,
)


api_router = APIRouter()

api_router.include_router(
    services.router,
    prefix="/services",
    tags=["Services"]
)

api_router.include_router(
    payments.router,
    prefix="/services/payment",
    tags=["Payments"]
)

api_router.include_router(
    tracking.router,
    prefix="/tracking",
    tags=["Tracking"]
)

api_router.include_router(
    admin_service_requests.router,
    prefix="/admin/service-requests",
    tags=["Admin - Service Requests"]
)

api_router.include_router(
    admin_payment_gateways.router,
    prefix="/admin/payment-gateways",
    tags=["Admin - Payment Gateways"]
)
