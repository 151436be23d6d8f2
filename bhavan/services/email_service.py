import asyncio
import logging
import smtplib
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

import httpx
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from bhavan.core.retry import RetryConfig, Sleep, with_retry

logger = logging.getLogger(__name__)


class EmailResult(BaseModel):
    sent: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0


class EmailService:
    """
    Transactional email over SMTP or the Resend HTTP API.

    send() retries transport failures with backoff and never raises; callers
    get an EmailResult and decide whether to log.
    """

    def __init__(
        self,
        provider: str = "smtp",
        smtp_host: str = "smtp.gmail.com",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        from_email: str = "",
        from_name: str = "Bhavan.ai",
        resend_api_key: str = "",
        resend_api_url: str = "https://api.resend.com/emails",
        max_attempts: int = 3,
        sleep: Sleep = asyncio.sleep,
    ):
        self.provider = provider
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.resend_api_key = resend_api_key
        self.resend_api_url = resend_api_url
        self.retry_config = RetryConfig(max_attempts=max_attempts, base_delay_ms=1000, max_delay_ms=10000)
        self._sleep = sleep

    @property
    def is_configured(self) -> bool:
        if self.provider == "resend":
            return bool(self.resend_api_key and self.from_email)
        return bool(self.smtp_user and self.smtp_password)

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
    ) -> EmailResult:
        """
        Send an email.

        Args:
            to: Recipient email address
            subject: Email subject
            html: HTML body
            text: Plain text body (optional fallback)

        Returns:
            EmailResult with sent flag, provider message id or error, attempts made
        """
        if not self.is_configured:
            logger.warning(f"Email not configured ({self.provider}); skipping '{subject}' to {to}")
            return EmailResult(sent=False, error="Email not configured", attempts=0)

        attempts = 0

        async def attempt() -> str:
            nonlocal attempts
            attempts += 1
            if self.provider == "resend":
                return await self._send_resend(to, subject, html, text)
            return await run_in_threadpool(self._send_smtp, to, subject, html, text)

        try:
            message_id = await with_retry(
                attempt,
                should_retry=lambda e: not isinstance(e, smtplib.SMTPAuthenticationError),
                config=self.retry_config,
                operation_name=f"send email to {to}",
                sleep=self._sleep,
            )
        except Exception as e:
            logger.error(f"Failed to send '{subject}' to {to} after {attempts} attempt(s): {e}")
            return EmailResult(sent=False, error=str(e), attempts=attempts)

        logger.info(f"Email '{subject}' sent to {to}")
        return EmailResult(sent=True, message_id=message_id, attempts=attempts)

    def _send_smtp(self, to: str, subject: str, html: str, text: Optional[str]) -> str:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{self.from_name} <{self.from_email}>"
        msg['To'] = to
        message_id = make_msgid(domain=self.from_email.split("@")[-1] or None)
        msg['Message-ID'] = message_id

        if text:
            msg.attach(MIMEText(text, 'plain'))
        msg.attach(MIMEText(html, 'html'))

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
            server.starttls()
            server.login(self.smtp_user, self.smtp_password)
            server.sendmail(self.from_email, to, msg.as_string())
        return message_id

    async def _send_resend(self, to: str, subject: str, html: str, text: Optional[str]) -> str:
        payload = {
            "from": f"{self.from_name} <{self.from_email}>",
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text

        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.resend_api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.resend_api_key}"},
                timeout=10.0,
            )
        response.raise_for_status()
        return response.json().get("id") or str(uuid.uuid4())


def get_email_service() -> EmailService:
    """Get configured email service instance."""
    from bhavan.config import settings

    return EmailService(
        provider=settings.EMAIL_PROVIDER,
        smtp_host=settings.SMTP_HOST,
        smtp_port=settings.SMTP_PORT,
        smtp_user=settings.SMTP_USER,
        smtp_password=settings.SMTP_PASSWORD,
        from_email=settings.SMTP_FROM_EMAIL,
        from_name=settings.SMTP_FROM_NAME,
        resend_api_key=settings.RESEND_API_KEY,
        resend_api_url=settings.RESEND_API_URL,
        max_attempts=settings.EMAIL_MAX_ATTEMPTS,
    )
