"""Service request (one paid-service purchase) and its status audit trail.

A request is created unpaid by checkout, settled by the payment webhook and
then moved through fulfilment by operators. Rows are never deleted.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bhavan.database import Base
from bhavan.db_types import MinorUnits, UUIDType

if TYPE_CHECKING:
    from bhavan.models.service import Service, ServiceTier
    from bhavan.models.user import User


class ServiceRequestStatus(str, Enum):
    """Fulfilment status."""
    PAYMENT_CONFIRMED = "payment_confirmed"
    PENDING_CONTACT = "pending_contact"
    TEAM_ASSIGNED = "team_assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"      # Terminal
    CANCELLED = "cancelled"      # Terminal


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class ServiceRequest(Base):
    __tablename__ = "service_requests"
    __table_args__ = (
        Index("ix_service_requests_status", "status"),
        Index("ix_service_requests_payment_status", "payment_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    reference_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="SR-<base36 time>-<6 random>, shared with the customer"
    )

    service_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("services.id"),
        nullable=False
    )
    service_tier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("service_tiers.id"),
        nullable=True
    )

    # Customer
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    requirements: Mapped[str] = mapped_column(Text, nullable=False)

    # Payment
    payment_gateway: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_amount: Mapped[int] = mapped_column(MinorUnits, nullable=False)
    payment_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    payment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PENDING.value
    )
    payment_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Fulfilment
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=ServiceRequestStatus.PENDING_CONTACT.value
    )
    assigned_provider_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    # Attribution
    affiliate_code: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Code as supplied at checkout"
    )
    affiliate_id: Mapped[Optional[str]] = mapped_column(
        String(50),
        ForeignKey("affiliates.id"),
        nullable=True,
        comment="Resolved affiliate, NO_AFFILIATE_ID when none"
    )

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

    service: Mapped["Service"] = relationship("Service")
    service_tier: Mapped[Optional["ServiceTier"]] = relationship("ServiceTier")
    assigned_provider: Mapped[Optional["User"]] = relationship("User")
    status_history: Mapped[List["ServiceRequestStatusHistory"]] = relationship(
        "ServiceRequestStatusHistory",
        back_populates="service_request",
        order_by="ServiceRequestStatusHistory.created_at"
    )

    def __repr__(self) -> str:
        return f"<ServiceRequest {self.reference_number} ({self.status}/{self.payment_status})>"


class ServiceRequestStatusHistory(Base):
    """One accepted status transition. Append-only."""
    __tablename__ = "service_request_status_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    service_request_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("service_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    old_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    new_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    service_request: Mapped["ServiceRequest"] = relationship(
        "ServiceRequest",
        back_populates="status_history"
    )
