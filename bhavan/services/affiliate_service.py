"""
Affiliate attribution.

Attribution never blocks the surrounding operation: any code that is
missing, malformed, unknown or inactive resolves to NO_AFFILIATE_ID.
"""

import logging
import re
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bhavan.core.errors import ValidationError
from bhavan.models.affiliate import (
    Affiliate,
    AffiliateStatus,
    NO_AFFILIATE_ID,
    TrackingEvent,
    TrackingEventType,
)

logger = logging.getLogger(__name__)

AFFILIATE_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,50}$")


def is_valid_affiliate_code(code: Optional[str]) -> bool:
    return bool(code) and AFFILIATE_CODE_PATTERN.match(code) is not None


def is_attributed(affiliate_id: Optional[str]) -> bool:
    """True when the id names a real affiliate rather than the sentinel."""
    return bool(affiliate_id) and affiliate_id != NO_AFFILIATE_ID


class AffiliateService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve_affiliate(self, code: Optional[str]) -> str:
        """Affiliate id of record for a caller-supplied code. Never raises."""
        if code is not None:
            code = code.strip()
        if not is_valid_affiliate_code(code) or code == NO_AFFILIATE_ID:
            return NO_AFFILIATE_ID

        try:
            result = await self.db.execute(
                select(Affiliate.id).where(
                    Affiliate.id == code,
                    Affiliate.status == AffiliateStatus.ACTIVE.value,
                )
            )
            affiliate_id = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Affiliate lookup failed for code '{code}', using no-affiliate: {e}")
            return NO_AFFILIATE_ID

        if affiliate_id is None:
            logger.info(f"Affiliate code '{code}' is unknown or inactive, using no-affiliate")
            return NO_AFFILIATE_ID
        return affiliate_id

    async def record_event(
        self,
        affiliate_id: str,
        event_type: TrackingEventType,
        user_id: Optional[uuid.UUID] = None,
        property_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TrackingEvent:
        """Append a tracking event for an already-resolved affiliate id."""
        event = TrackingEvent(
            affiliate_id=affiliate_id,
            event_type=event_type.value,
            user_id=user_id,
            property_id=property_id,
            event_metadata=metadata,
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def track(
        self,
        event_type: str,
        affiliate_code: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
        property_id: Optional[str] = None,
        metadata: Optional[Any] = None,
    ) -> TrackingEvent:
        """
        Record a client-reported signup or property contact.

        Payment events are only written by the webhook pipeline.
        """
        try:
            kind = TrackingEventType(event_type)
        except ValueError:
            kind = None
        if kind not in (TrackingEventType.SIGNUP, TrackingEventType.PROPERTY_CONTACT):
            raise ValidationError(
                "Invalid event type",
                fields={"event_type": "Event type must be 'signup' or 'property_contact'"},
            )
        if kind == TrackingEventType.SIGNUP and not user_id:
            raise ValidationError(
                "user_id is required for signup events",
                fields={"user_id": "User ID is required for signup events"},
            )
        if kind == TrackingEventType.PROPERTY_CONTACT and not property_id:
            raise ValidationError(
                "property_id is required for property_contact events",
                fields={"property_id": "Property ID is required for property contact events"},
            )
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError(
                "metadata must be an object",
                fields={"metadata": "Metadata must be a JSON object"},
            )

        affiliate_id = await self.resolve_affiliate(affiliate_code)
        event = await self.record_event(
            affiliate_id,
            kind,
            user_id=user_id,
            property_id=property_id,
            metadata=metadata,
        )
        logger.info(f"Tracked {kind.value} event {event.id} for affiliate {affiliate_id}")
        return event
