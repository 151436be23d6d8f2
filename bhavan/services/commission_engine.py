"""
Affiliate commission rules.

calculate_commission is pure; CommissionService handles rule lookup and the
commission rows themselves.
"""

import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bhavan.models.commission import (
    AffiliateCommission,
    CommissionConfig,
    CommissionStatus,
    CommissionType,
    DEFAULT_COMMISSION_CATEGORY,
)

logger = logging.getLogger(__name__)


def calculate_commission(config: CommissionConfig, service_amount: int) -> int:
    """
    Commission for a service amount in minor units.

    Percentage rules return amount * value / 100 rounded half-up to a whole
    minor unit. Fixed rules return the configured value unchanged.
    """
    value = Decimal(str(config.commission_value))
    if config.commission_type == CommissionType.PERCENTAGE.value:
        commission = Decimal(service_amount) * value / Decimal(100)
        return int(commission.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int(value)


class CommissionService:
    """Commission rule lookup and commission posting."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_config_for_category(self, category: Optional[str]) -> Optional[CommissionConfig]:
        """Active rule for the category, else the active 'default' rule."""
        categories = [DEFAULT_COMMISSION_CATEGORY]
        if category and category != DEFAULT_COMMISSION_CATEGORY:
            categories.insert(0, category)

        result = await self.db.execute(
            select(CommissionConfig).where(
                CommissionConfig.service_category.in_(categories),
                CommissionConfig.is_active == True,  # noqa: E712
            )
        )
        configs = {c.service_category: c for c in result.scalars().all()}
        for candidate in categories:
            if candidate in configs:
                return configs[candidate]
        return None

    async def get_for_service_request(self, service_request_id: uuid.UUID) -> Optional[AffiliateCommission]:
        result = await self.db.execute(
            select(AffiliateCommission).where(
                AffiliateCommission.service_request_id == service_request_id
            )
        )
        return result.scalar_one_or_none()

    async def record_commission(
        self,
        affiliate_id: str,
        service_request_id: uuid.UUID,
        service_amount: int,
        service_currency: str,
        category: Optional[str],
        notes: Optional[str] = None,
    ) -> Optional[AffiliateCommission]:
        """
        Compute and insert the commission for a paid request.

        Returns None when no rule applies or a commission already exists for
        the request. A concurrent duplicate fails the unique constraint on
        service_request_id at flush and rolls back with its transaction.
        """
        existing = await self.get_for_service_request(service_request_id)
        if existing is not None:
            logger.info(f"Commission already recorded for service request {service_request_id}")
            return None

        config = await self.get_config_for_category(category)
        if config is None:
            logger.warning(
                f"No active commission config for category '{category}' or default; "
                f"skipping commission for service request {service_request_id}"
            )
            return None

        amount = calculate_commission(config, service_amount)
        # Percentage commissions are paid in the currency the customer paid in
        if config.commission_type == CommissionType.PERCENTAGE.value:
            currency = service_currency
        else:
            currency = config.currency
        commission = AffiliateCommission(
            affiliate_id=affiliate_id,
            service_request_id=service_request_id,
            commission_amount=amount,
            commission_currency=currency,
            status=CommissionStatus.PENDING.value,
            service_amount=service_amount,
            service_currency=service_currency,
            notes=notes,
        )

        self.db.add(commission)
        await self.db.flush()

        logger.info(
            f"Recorded commission {amount} {commission.commission_currency} "
            f"for affiliate {affiliate_id} on service request {service_request_id}"
        )
        return commission

    async def cancel_for_service_request(self, service_request_id: uuid.UUID, notes: str) -> bool:
        """Cancel the request's commission if one exists. Returns True if a row changed."""
        result = await self.db.execute(
            update(AffiliateCommission)
            .where(
                AffiliateCommission.service_request_id == service_request_id,
                AffiliateCommission.status != CommissionStatus.CANCELLED.value,
            )
            .values(status=CommissionStatus.CANCELLED.value, notes=notes)
        )
        cancelled = result.rowcount > 0
        if cancelled:
            logger.info(f"Cancelled commission for service request {service_request_id}")
        return cancelled
