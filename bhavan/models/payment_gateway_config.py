"""Stored payment gateway credentials, one row per provider."""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import String, Boolean, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from bhavan.database import Base
from bhavan.db_types import JSONType, UUIDType


class PaymentGatewayConfig(Base):
    __tablename__ = "payment_gateway_config"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    provider: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        comment="razorpay, stripe, paypal, mock"
    )
    api_key: Mapped[str] = mapped_column(String(255), nullable=False)
    api_secret: Mapped[str] = mapped_column(Text, nullable=False, comment="Encrypted (ENC: prefix)")
    webhook_secret: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="Encrypted (ENC: prefix)")
    mode: Mapped[str] = mapped_column(String(10), nullable=False, default="test")
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    additional_config: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

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
