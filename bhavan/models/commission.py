"""Affiliate commission rules and the commissions owed per paid request."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Numeric, Text
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bhavan.database import Base
from bhavan.db_types import MinorUnits, UUIDType


# Category row used when a service category has no active rule of its own
DEFAULT_COMMISSION_CATEGORY = "default"


class CommissionType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class CommissionConfig(Base):
    """Commission rule for one service category (ca, legal, other, default)."""
    __tablename__ = "affiliate_commission_config"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    service_category: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        comment="ca, legal, other, default"
    )
    commission_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CommissionType.PERCENTAGE.value
    )
    commission_value: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Percent for percentage rules, minor units for fixed rules"
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

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


class AffiliateCommission(Base):
    """
    Commission owed to an affiliate for one paid service request.

    At most one row per request. Refunds move it to cancelled; amounts are
    never recomputed in place.
    """
    __tablename__ = "affiliate_commissions"
    __table_args__ = (
        UniqueConstraint("service_request_id", name="uq_affiliate_commissions_service_request"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    affiliate_id: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("affiliates.id"),
        nullable=False,
        index=True
    )
    service_request_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("service_requests.id"),
        nullable=False
    )
    commission_amount: Mapped[int] = mapped_column(MinorUnits, nullable=False)
    commission_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CommissionStatus.PENDING.value,
        index=True
    )
    service_amount: Mapped[int] = mapped_column(MinorUnits, nullable=False)
    service_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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
