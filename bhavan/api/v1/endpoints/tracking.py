"""Affiliate tracking endpoint."""
from fastapi import APIRouter, status

from bhavan.api.deps import DB
from bhavan.schemas.tracking import TrackingEventCreate, TrackingEventResponse
from bhavan.services.affiliate_service import AffiliateService

router = APIRouter(tags=["Tracking"])


@router.post("/events", response_model=TrackingEventResponse, status_code=status.HTTP_201_CREATED)
async def record_tracking_event(data: TrackingEventCreate, db: DB):
    """
    Record a signup or property contact for affiliate attribution.

    Unknown or inactive affiliate codes are recorded against the
    no-affiliate id instead of being rejected.
    """
    event = await AffiliateService(db).track(
        data.event_type,
        affiliate_code=data.affiliate_code,
        user_id=data.user_id,
        property_id=data.property_id,
        metadata=data.metadata,
    )
    return TrackingEventResponse(event_id=event.id, affiliate_id=event.affiliate_id)
