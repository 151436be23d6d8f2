"""
Customer and provider notifications for service requests.

Every public method is best effort: failures are logged and reported in the
returned EmailResult, never raised, so notification problems cannot undo a
payment or status change that has already been committed.
"""

import logging
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bhavan.config import settings
from bhavan.models.service_request import ServiceRequest
from bhavan.models.user import User, UserRole
from bhavan.services.email_service import EmailResult, EmailService, get_email_service
from bhavan.services.service_request_state_machine import (
    get_next_step,
    get_status_description,
    get_status_label,
)

logger = logging.getLogger(__name__)


class CustomerEvent(str, Enum):
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_FAILED = "payment_failed"
    REFUNDED = "refunded"
    TEAM_ASSIGNED = "team_assigned"
    STATUS_UPDATED = "status_updated"
    COMPLETED = "completed"


CURRENCY_SYMBOLS = {"INR": "₹", "USD": "$", "EUR": "€", "GBP": "£"}


def format_amount(amount_minor: int, currency: str) -> str:
    """Minor units to a display string, e.g. 5000000 INR -> '₹50,000.00'."""
    major = (Decimal(amount_minor) / Decimal(100)).quantize(Decimal("0.01"))
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    if symbol:
        return f"{symbol}{major:,}"
    return f"{currency.upper()} {major:,}"


def _render_email(heading: str, greeting: str, paragraphs: List[str], service_request: ServiceRequest, service_name: str) -> str:
    body = "\n".join(f"<p>{p}</p>" for p in paragraphs)
    track_url = f"{settings.FRONTEND_URL}/services/track?ref={service_request.reference_number}"
    return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background: #0f766e; color: white; padding: 20px; text-align: center; }}
                .content {{ padding: 30px; background: #f9f9f9; }}
                .details {{ background: #fff; border: 1px solid #e5e7eb; padding: 15px; border-radius: 5px; }}
                .button {{ display: inline-block; padding: 12px 30px; background: #0f766e; color: white; text-decoration: none; border-radius: 5px; margin: 20px 0; }}
                .footer {{ padding: 20px; text-align: center; color: #666; font-size: 12px; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header"><h1>Bhavan.ai</h1></div>
                <div class="content">
                    <h2>{heading}</h2>
                    <p>{greeting}</p>
                    {body}
                    <div class="details">
                        <p><strong>Reference:</strong> {service_request.reference_number}</p>
                        <p><strong>Service:</strong> {service_name}</p>
                        <p><strong>Amount:</strong> {format_amount(service_request.payment_amount, service_request.payment_currency)}</p>
                        <p><strong>Status:</strong> {get_status_label(service_request.status)}</p>
                    </div>
                    <p style="text-align: center;"><a href="{track_url}" class="button">Track your request</a></p>
                    <p>Best regards,<br>Bhavan.ai Team</p>
                </div>
                <div class="footer">
                    <p>This is an automated message. Please do not reply to this email.</p>
                </div>
            </div>
        </body>
        </html>
        """


def _render_text(heading: str, greeting: str, paragraphs: List[str], service_request: ServiceRequest, service_name: str) -> str:
    lines = [heading, "", greeting, ""]
    lines.extend(paragraphs)
    lines.extend([
        "",
        f"Reference: {service_request.reference_number}",
        f"Service: {service_name}",
        f"Amount: {format_amount(service_request.payment_amount, service_request.payment_currency)}",
        f"Status: {get_status_label(service_request.status)}",
        "",
        "Bhavan.ai Team",
    ])
    return "\n".join(lines)


class NotificationService:

    def __init__(self, db: AsyncSession, email_service: Optional[EmailService] = None):
        self.db = db
        self.email = email_service or get_email_service()

    # ==================== CUSTOMER ====================

    def _customer_copy(self, event: CustomerEvent, service_request: ServiceRequest, note: Optional[str]) -> tuple[str, str, List[str]]:
        ref = service_request.reference_number
        if event == CustomerEvent.PAYMENT_CONFIRMED:
            return (
                f"Payment confirmed - {ref}",
                "Thank you for your purchase!",
                [
                    "We have received your payment and your service request is confirmed.",
                    "Our team will contact you within 24-48 hours to discuss your requirements and next steps.",
                ],
            )
        if event == CustomerEvent.PAYMENT_FAILED:
            return (
                f"Payment failed - {ref}",
                "Your payment could not be completed",
                [
                    "Unfortunately your payment did not go through and no amount has been charged.",
                    "You can retry the payment from the request tracking page.",
                ],
            )
        if event == CustomerEvent.REFUNDED:
            return (
                f"Payment refunded - {ref}",
                "Your payment has been refunded",
                [
                    "Your payment has been refunded and this service request has been cancelled.",
                    "Refunds usually reach your account within 5-7 working days.",
                ],
            )
        if event == CustomerEvent.TEAM_ASSIGNED:
            return (
                f"Team assigned - {ref}",
                "A service provider has been assigned",
                [get_next_step(service_request.status)],
            )
        if event == CustomerEvent.COMPLETED:
            return (
                f"Service completed - {ref}",
                "Your service has been completed",
                [get_status_description(service_request.status), get_next_step(service_request.status)],
            )
        paragraphs = [get_status_description(service_request.status)]
        if note:
            paragraphs.append(f"Note from our team: {note}")
        paragraphs.append(get_next_step(service_request.status))
        return (f"Status update - {ref}", "Your service request has been updated", paragraphs)

    async def notify_customer(
        self,
        service_request: ServiceRequest,
        service_name: str,
        event: CustomerEvent,
        note: Optional[str] = None,
    ) -> EmailResult:
        try:
            subject, heading, paragraphs = self._customer_copy(event, service_request, note)
            greeting = f"Hello {service_request.customer_name},"
            return await self.email.send(
                service_request.customer_email,
                subject,
                _render_email(heading, greeting, paragraphs, service_request, service_name),
                _render_text(heading, greeting, paragraphs, service_request, service_name),
            )
        except Exception as e:
            logger.error(
                f"Failed to notify customer for {service_request.reference_number} ({event.value}): {e}"
            )
            return EmailResult(sent=False, error=str(e))

    # ==================== PROVIDER / ADMIN ====================

    async def notify_provider(self, service_request: ServiceRequest, service_name: str) -> List[EmailResult]:
        """Tell the assigned provider about a paid request, falling back to admins."""
        try:
            provider = None
            if service_request.assigned_provider_id:
                provider = await self.db.get(User, service_request.assigned_provider_id)

            if provider is None or not provider.is_active:
                return await self.notify_admins(service_request, service_name)

            return [await self._send_provider_email(provider.email, provider.display_name, service_request, service_name)]
        except Exception as e:
            logger.error(f"Failed to notify provider for {service_request.reference_number}: {e}")
            return [EmailResult(sent=False, error=str(e))]

    async def notify_admins(self, service_request: ServiceRequest, service_name: str) -> List[EmailResult]:
        try:
            result = await self.db.execute(
                select(User).where(
                    User.role == UserRole.ADMIN.value,
                    User.is_active == True,  # noqa: E712
                )
            )
            recipients = [(u.email, u.display_name) for u in result.scalars().all()]
            if not recipients and settings.ADMIN_EMAIL:
                recipients = [(settings.ADMIN_EMAIL, "Admin")]

            results = []
            for email, name in recipients:
                results.append(await self._send_provider_email(email, name, service_request, service_name))
            return results
        except Exception as e:
            logger.error(f"Failed to notify admins for {service_request.reference_number}: {e}")
            return [EmailResult(sent=False, error=str(e))]

    async def _send_provider_email(
        self,
        to: str,
        name: str,
        service_request: ServiceRequest,
        service_name: str,
    ) -> EmailResult:
        heading = "New paid service request"
        greeting = f"Hello {name},"
        paragraphs = [
            f"{service_request.customer_name} has paid for {service_name}.",
            f"Contact: {service_request.customer_email}, {service_request.customer_phone}",
            f"Requirements: {service_request.requirements}",
            "Please reach out to the customer within 24-48 hours.",
        ]
        return await self.email.send(
            to,
            f"New service request {service_request.reference_number}: {service_name}",
            _render_email(heading, greeting, paragraphs, service_request, service_name),
            _render_text(heading, greeting, paragraphs, service_request, service_name),
        )
