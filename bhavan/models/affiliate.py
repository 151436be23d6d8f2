"""Affiliate referral partners and attribution events."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from bhavan.database import Base
from bhavan.db_types import JSONType, UUIDType


# Reserved affiliate id used whenever attribution is absent or invalid
NO_AFFILIATE_ID = "NO_AFFILIATE_ID"


class AffiliateStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TrackingEventType(str, Enum):
    SIGNUP = "signup"
    PROPERTY_CONTACT = "property_contact"
    PAYMENT = "payment"


class Affiliate(Base):
    """
    Referral partner.

    The id is either supplied by an admin (letters, digits, '-' and '_',
    up to 50 chars) or generated. NO_AFFILIATE_ID is seeded by the
    migration and must never be edited or removed.
    """
    __tablename__ = "affiliates"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AffiliateStatus.ACTIVE.value,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def is_active(self) -> bool:
        return self.status == AffiliateStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Affiliate {self.id} ({self.status})>"


class TrackingEvent(Base):
    """Append-only attribution record. affiliate_id is always a resolved id."""
    __tablename__ = "tracking_events"
    __table_args__ = (
        Index("ix_tracking_events_affiliate_type", "affiliate_id", "event_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    affiliate_id: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("affiliates.id"),
        nullable=False
    )
    event_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="signup, property_contact, payment"
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    property_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    event_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata",
        JSONType,
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
