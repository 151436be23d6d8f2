"""
Payment gateway adapter interface.

Each provider implements PaymentGatewayAdapter. Provider-side failures are
raised as PaymentGatewayError with a provider-specific code; transport
failures (timeouts, refused connections) are raised as retryable
NetworkError so callers can wrap them in the network retry policy.
"""

import hmac
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from bhavan.core.errors import PaymentError

logger = logging.getLogger(__name__)


class GatewayProvider(str, Enum):
    RAZORPAY = "razorpay"
    STRIPE = "stripe"
    PAYPAL = "paypal"
    MOCK = "mock"


class GatewayMode(str, Enum):
    TEST = "test"
    LIVE = "live"


class WebhookStatus(str, Enum):
    """Canonical payment outcome parsed from any provider's webhook."""
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class GatewayConfig(BaseModel):
    """Resolved credentials for one provider. Secrets are plaintext here."""
    provider: str
    api_key: str = ""
    api_secret: str = ""
    webhook_secret: Optional[str] = None
    mode: GatewayMode = GatewayMode.TEST
    additional_config: Dict[str, Any] = Field(default_factory=dict)


class PaymentIntentParams(BaseModel):
    amount: int  # Minor units
    currency: str = "INR"
    customer_email: str
    customer_name: str
    description: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PaymentIntent(BaseModel):
    client_secret: str
    amount: int
    currency: str
    gateway: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PaymentWebhookResult(BaseModel):
    transaction_id: str
    status: WebhookStatus
    amount: int
    currency: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    event: Optional[str] = None


class RefundResult(BaseModel):
    refund_id: str
    amount: Optional[int] = None  # None: full refund whose amount the provider did not report
    status: RefundStatus
    message: Optional[str] = None


class PaymentGatewayError(PaymentError):
    """Provider-side failure. `code` is the provider-specific error code."""

    def __init__(
        self,
        message: str,
        code: str,
        gateway_name: str,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            gateway_code=code,
            context={"gateway": gateway_name, "gateway_code": code},
        )
        self.gateway_code = code
        self.gateway_name = gateway_name
        self.original_error = original_error


class PaymentGatewayAdapter(ABC):
    """Uniform interface over payment providers."""

    gateway_name: str = ""

    def __init__(self, config: GatewayConfig):
        self.config = config

    def get_gateway_name(self) -> str:
        return self.gateway_name

    @abstractmethod
    async def create_payment_intent(self, params: PaymentIntentParams) -> PaymentIntent:
        """Create a provider-side payment the customer completes in the browser."""

    @abstractmethod
    def verify_webhook(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        """
        Check a webhook signature against the raw request body.

        Returns False on any mismatch or missing secret; never raises.
        """

    @abstractmethod
    async def process_webhook(self, payload: Dict[str, Any]) -> PaymentWebhookResult:
        """Parse a verified webhook body into the canonical result."""

    @abstractmethod
    async def refund(self, transaction_id: str, amount: Optional[int] = None) -> RefundResult:
        """Refund a payment in full, or `amount` minor units of it."""


def stringify_notes(values: Dict[str, Any]) -> Dict[str, str]:
    """Flatten metadata to the string-only key/values providers accept."""
    return {str(k): str(v) for k, v in values.items() if v is not None}


def signatures_match(expected: str, received: str) -> bool:
    """Constant-time comparison that tolerates non-ASCII header values."""
    return hmac.compare_digest(expected.encode(), received.encode("utf-8", "surrogatepass"))
