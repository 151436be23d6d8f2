"""
Payment gateway configuration.

Resolution order for the active gateway:
1. Active row flagged is_default
2. Most recently created active row
3. PAYMENT_GATEWAY_* environment settings, if all are present

Resolution happens once per request (see bhavan.api.deps.get_gateway_config)
and the result is passed down to the purchase and webhook services.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bhavan.config import Settings, settings as default_settings
from bhavan.core.errors import NotFoundError, ValidationError
from bhavan.models.payment_gateway_config import PaymentGatewayConfig
from bhavan.services.encryption_service import (
    EncryptionError,
    EncryptionService,
    get_encryption_service,
)
from bhavan.services.payment_gateway.base import GatewayConfig, GatewayMode, PaymentGatewayError
from bhavan.services.payment_gateway.factory import validate_gateway_config

logger = logging.getLogger(__name__)


def config_from_env(settings: Settings = default_settings) -> Optional[GatewayConfig]:
    """Gateway configuration from environment settings, or None if incomplete."""
    provider = settings.PAYMENT_GATEWAY_PROVIDER
    api_key = settings.PAYMENT_GATEWAY_API_KEY
    api_secret = settings.PAYMENT_GATEWAY_API_SECRET
    webhook_secret = settings.PAYMENT_GATEWAY_WEBHOOK_SECRET

    if not all([provider, api_key, api_secret, webhook_secret]):
        return None

    try:
        mode = GatewayMode(settings.PAYMENT_GATEWAY_MODE)
    except ValueError:
        mode = GatewayMode.TEST

    return GatewayConfig(
        provider=provider,
        api_key=api_key,
        api_secret=api_secret,
        webhook_secret=webhook_secret,
        mode=mode,
    )


class PaymentConfigService:
    """Stored gateway credentials and active-gateway resolution."""

    def __init__(
        self,
        db: AsyncSession,
        encryption: Optional[EncryptionService] = None,
        settings: Settings = default_settings,
    ):
        self.db = db
        self.encryption = encryption or get_encryption_service()
        self.settings = settings

    def _to_gateway_config(self, row: PaymentGatewayConfig) -> GatewayConfig:
        return GatewayConfig(
            provider=row.provider,
            api_key=row.api_key,
            api_secret=self.encryption.decrypt(row.api_secret) or "",
            webhook_secret=self.encryption.decrypt(row.webhook_secret),
            mode=GatewayMode(row.mode),
            additional_config=row.additional_config or {},
        )

    async def get_active_config(self) -> Optional[GatewayConfig]:
        result = await self.db.execute(
            select(PaymentGatewayConfig)
            .where(PaymentGatewayConfig.is_active == True)  # noqa: E712
            .order_by(
                PaymentGatewayConfig.is_default.desc(),
                PaymentGatewayConfig.created_at.desc(),
            )
            .limit(1)
        )
        row = result.scalar_one_or_none()

        if row is not None:
            try:
                return self._to_gateway_config(row)
            except (EncryptionError, ValueError) as e:
                logger.error(f"Stored {row.provider} gateway config is unreadable: {e}")

        env_config = config_from_env(self.settings)
        if env_config is not None:
            logger.debug(f"Using {env_config.provider} gateway config from environment")
        return env_config

    async def _get_row(self, provider: str) -> Optional[PaymentGatewayConfig]:
        result = await self.db.execute(
            select(PaymentGatewayConfig).where(PaymentGatewayConfig.provider == provider)
        )
        return result.scalar_one_or_none()

    async def get_config_by_provider(self, provider: str) -> Optional[GatewayConfig]:
        row = await self._get_row(provider)
        return self._to_gateway_config(row) if row else None

    async def save_config(
        self,
        config: GatewayConfig,
        is_active: bool = True,
        is_default: bool = False,
    ) -> PaymentGatewayConfig:
        """Create or replace the stored configuration for config.provider."""
        try:
            validate_gateway_config(config)
        except PaymentGatewayError as e:
            raise ValidationError(e.message, fields={"provider": e.message})

        if is_default:
            await self.db.execute(
                update(PaymentGatewayConfig)
                .where(PaymentGatewayConfig.provider != config.provider)
                .values(is_default=False)
            )

        row = await self._get_row(config.provider)
        if row is None:
            row = PaymentGatewayConfig(provider=config.provider)
            self.db.add(row)

        row.api_key = config.api_key
        row.api_secret = self.encryption.encrypt(config.api_secret)
        row.webhook_secret = self.encryption.encrypt(config.webhook_secret)
        row.mode = config.mode.value
        row.additional_config = config.additional_config or None
        row.is_active = is_active
        row.is_default = is_default

        await self.db.flush()
        logger.info(f"Saved {config.provider} gateway config (active={is_active}, default={is_default})")
        return row

    async def set_default_provider(self, provider: str) -> PaymentGatewayConfig:
        row = await self._get_row(provider)
        if row is None:
            raise NotFoundError("Payment gateway configuration", provider)

        await self.db.execute(
            update(PaymentGatewayConfig)
            .where(PaymentGatewayConfig.provider != provider)
            .values(is_default=False)
        )
        row.is_default = True
        row.is_active = True
        await self.db.flush()
        logger.info(f"Default payment gateway set to {provider}")
        return row

    async def set_provider_active(self, provider: str, is_active: bool) -> PaymentGatewayConfig:
        row = await self._get_row(provider)
        if row is None:
            raise NotFoundError("Payment gateway configuration", provider)

        row.is_active = is_active
        if not is_active:
            row.is_default = False
        await self.db.flush()
        logger.info(f"Payment gateway {provider} {'activated' if is_active else 'deactivated'}")
        return row

    async def get_configured_providers(self) -> List[Dict[str, Any]]:
        """Summary of stored configurations, without secrets."""
        result = await self.db.execute(
            select(PaymentGatewayConfig).order_by(PaymentGatewayConfig.created_at)
        )
        return [
            {
                "provider": row.provider,
                "mode": row.mode,
                "is_active": row.is_active,
                "is_default": row.is_default,
                "created_at": row.created_at,
                "updated_at": row.updated_at,
            }
            for row in result.scalars().all()
        ]
