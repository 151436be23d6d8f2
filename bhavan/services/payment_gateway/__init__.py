# Payment gateway adapters
from bhavan.services.payment_gateway.base import (
    GatewayConfig,
    GatewayMode,
    GatewayProvider,
    PaymentGatewayAdapter,
    PaymentGatewayError,
    PaymentIntent,
    PaymentIntentParams,
    PaymentWebhookResult,
    RefundResult,
    RefundStatus,
    WebhookStatus,
)
from bhavan.services.payment_gateway.factory import (
    create_payment_gateway,
    get_supported_providers,
    is_provider_supported,
)

__all__ = [
    "GatewayConfig",
    "GatewayMode",
    "GatewayProvider",
    "PaymentGatewayAdapter",
    "PaymentGatewayError",
    "PaymentIntent",
    "PaymentIntentParams",
    "PaymentWebhookResult",
    "RefundResult",
    "RefundStatus",
    "WebhookStatus",
    "create_payment_gateway",
    "get_supported_providers",
    "is_provider_supported",
]
