"""Admin endpoints for payment gateway credentials."""
from fastapi import APIRouter, status

from bhavan.api.deps import DB, AdminUser
from bhavan.schemas.payment import (
    GatewayActivation,
    GatewayConfigCreate,
    GatewayConfigListResponse,
    GatewayConfigSummary,
)
from bhavan.services.payment_config_service import PaymentConfigService
from bhavan.services.payment_gateway import GatewayConfig, get_supported_providers

router = APIRouter(tags=["Admin - Payment Gateways"])


def _summary(row) -> GatewayConfigSummary:
    return GatewayConfigSummary(
        provider=row.provider,
        mode=row.mode,
        is_active=row.is_active,
        is_default=row.is_default,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


@router.get("", response_model=GatewayConfigListResponse)
async def list_payment_gateways(db: DB, user: AdminUser):
    """Stored gateway configurations. Secrets are never returned."""
    providers = await PaymentConfigService(db).get_configured_providers()
    return GatewayConfigListResponse(
        items=[GatewayConfigSummary(**p) for p in providers],
        supported_providers=get_supported_providers(),
    )


@router.put("", response_model=GatewayConfigSummary, status_code=status.HTTP_200_OK)
async def save_payment_gateway(data: GatewayConfigCreate, db: DB, user: AdminUser):
    """Create or replace the configuration for a provider."""
    config = GatewayConfig(
        provider=data.provider,
        api_key=data.api_key,
        api_secret=data.api_secret,
        webhook_secret=data.webhook_secret,
        mode=data.mode,
        additional_config=data.additional_config,
    )
    row = await PaymentConfigService(db).save_config(
        config, is_active=data.is_active, is_default=data.is_default
    )
    await db.refresh(row)
    return _summary(row)


@router.post("/{provider}/default", response_model=GatewayConfigSummary)
async def set_default_payment_gateway(provider: str, db: DB, user: AdminUser):
    row = await PaymentConfigService(db).set_default_provider(provider)
    await db.refresh(row)
    return _summary(row)


@router.patch("/{provider}", response_model=GatewayConfigSummary)
async def set_payment_gateway_active(
    provider: str,
    data: GatewayActivation,
    db: DB,
    user: AdminUser,
):
    row = await PaymentConfigService(db).set_provider_active(provider, data.is_active)
    await db.refresh(row)
    return _summary(row)
