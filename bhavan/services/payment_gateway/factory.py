"""Build the adapter for a resolved gateway configuration."""

import logging
from typing import Dict, List, Type

from bhavan.services.payment_gateway.base import (
    GatewayConfig,
    GatewayProvider,
    PaymentGatewayAdapter,
    PaymentGatewayError,
)
from bhavan.services.payment_gateway.mock_adapter import MockPaymentAdapter
from bhavan.services.payment_gateway.razorpay_adapter import RazorpayAdapter

logger = logging.getLogger(__name__)

GATEWAY_ADAPTERS: Dict[GatewayProvider, Type[PaymentGatewayAdapter]] = {
    GatewayProvider.RAZORPAY: RazorpayAdapter,
    GatewayProvider.MOCK: MockPaymentAdapter,
}


def get_supported_providers() -> List[str]:
    return [provider.value for provider in GATEWAY_ADAPTERS]


def is_provider_supported(provider: str) -> bool:
    return provider in get_supported_providers()


def validate_gateway_config(config: GatewayConfig) -> GatewayProvider:
    """
    Check a configuration is complete and names a supported provider.

    Raises:
        PaymentGatewayError: INVALID_CONFIG or UNSUPPORTED_PROVIDER
    """
    gateway_name = config.provider or "unknown"

    try:
        provider = GatewayProvider(config.provider)
    except ValueError:
        raise PaymentGatewayError(
            f"Unknown payment provider: {config.provider!r}",
            code="INVALID_CONFIG",
            gateway_name=gateway_name,
        )

    if not config.api_key or not config.api_secret:
        raise PaymentGatewayError(
            "API key and secret are required",
            code="INVALID_CONFIG",
            gateway_name=gateway_name,
        )
    if not config.webhook_secret:
        raise PaymentGatewayError(
            "Webhook secret is required",
            code="INVALID_CONFIG",
            gateway_name=gateway_name,
        )

    if provider not in GATEWAY_ADAPTERS:
        raise PaymentGatewayError(
            f"Payment provider '{provider.value}' is not supported yet. "
            f"Supported providers: {', '.join(get_supported_providers())}",
            code="UNSUPPORTED_PROVIDER",
            gateway_name=gateway_name,
        )
    return provider


def create_payment_gateway(config: GatewayConfig) -> PaymentGatewayAdapter:
    provider = validate_gateway_config(config)
    adapter = GATEWAY_ADAPTERS[provider](config)
    logger.debug(f"Created {provider.value} payment gateway adapter ({config.mode.value} mode)")
    return adapter
