"""Pydantic schemas for webhooks and gateway configuration."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from bhavan.services.payment_gateway import GatewayMode


class WebhookResponse(BaseModel):
    received: bool = True
    processed: bool
    message: Optional[str] = None


class GatewayConfigCreate(BaseModel):
    provider: str = Field(..., min_length=1, max_length=20)
    api_key: str = Field(..., min_length=1)
    api_secret: str = Field(..., min_length=1)
    webhook_secret: str = Field(..., min_length=1)
    mode: GatewayMode = GatewayMode.TEST
    additional_config: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    is_default: bool = False


class GatewayConfigSummary(BaseModel):
    """Stored configuration without secrets."""
    provider: str
    mode: str
    is_active: bool
    is_default: bool
    created_at: datetime
    updated_at: datetime


class GatewayConfigListResponse(BaseModel):
    items: List[GatewayConfigSummary]
    supported_providers: List[str]


class GatewayActivation(BaseModel):
    is_active: bool
