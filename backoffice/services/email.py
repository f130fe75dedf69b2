"""
Email Service - SMTP transport and transactional templates.

The transport is blocking smtplib; sends run in a worker thread so the event
loop is never held for the duration of an SMTP conversation.
"""

import asyncio
import smtplib
from datetime import datetime
from decimal import Decimal
from email.message import EmailMessage
from html import escape
from urllib.parse import urlencode

from backoffice.config import Settings
from backoffice.exceptions import DeliveryError
from backoffice.models.domain import EmailAttachment, OutboundEmail
from backoffice.observability.logging import get_logger
from backoffice.observability.metrics import metrics

logger = get_logger(__name__)


def format_money(amount: Decimal | float, currency: str = "USD") -> str:
    symbol = "$" if currency.upper() == "USD" else f"{currency.upper()} "
    return f"{symbol}{Decimal(str(amount)):,.2f}"


def _layout(title: str, body: str, business_name: str) -> str:
    return (
        "<!DOCTYPE html><html><body style=\"font-family: Arial, sans-serif; color: #1f2937;\">"
        "<div style=\"max-width: 600px; margin: 0 auto; padding: 24px;\">"
        f"<h2 style=\"color: #111827;\">{escape(title)}</h2>"
        f"{body}"
        "<hr style=\"border: none; border-top: 1px solid #e5e7eb; margin: 32px 0 16px;\">"
        f"<p style=\"font-size: 12px; color: #6b7280;\">{escape(business_name)}</p>"
        "</div></body></html>"
    )


class EmailService:
    """Sends transactional email over SMTP."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_ssl: bool = False,
        timeout: float = 30.0,
        app_url: str = "",
        business_name: str = "",
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.timeout = timeout
        self.app_url = app_url.rstrip("/")
        self.business_name = business_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.mail_sender,
            username=settings.smtp_user,
            password=settings.smtp_pass,
            use_ssl=settings.smtp_secure,
            timeout=settings.smtp_timeout,
            app_url=settings.app_url,
            business_name=settings.business_name,
        )

    # ========================================================================
    # Transport
    # ========================================================================

    def _build_message(self, email: OutboundEmail) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = f"{self.business_name} <{self.sender}>" if self.business_name else self.sender
        msg["To"] = email.to
        msg["Subject"] = email.subject
        if email.reply_to:
            msg["Reply-To"] = email.reply_to
        msg.set_content("This message requires an HTML-capable email client.")
        msg.add_alternative(email.html, subtype="html")
        for attachment in email.attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            msg.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        if self.use_ssl:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as smtp:
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)

    async def send(self, email: OutboundEmail, template: str = "generic") -> None:
        """
        Deliver one message.

        Raises:
            DeliveryError: If the SMTP server rejects or cannot be reached
        """
        if not self.sender:
            metrics.record_email(template, success=False)
            raise DeliveryError("Email sender is not configured")

        msg = self._build_message(email)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as exc:
            metrics.record_email(template, success=False)
            logger.error(
                "email_send_failed",
                template=template,
                to=email.to,
                subject=email.subject,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise DeliveryError(f"Failed to send email: {exc}") from exc

        metrics.record_email(template, success=True)
        logger.info(
            "email_sent",
            template=template,
            to=email.to,
            subject=email.subject,
            attachments=len(email.attachments),
        )

    # ========================================================================
    # Templates
    # ========================================================================

    def invoice_email(
        self,
        to: str,
        client_name: str,
        invoice_number: str,
        total: Decimal,
        currency: str,
        due_date: datetime,
        document: bytes,
        message: str | None = None,
    ) -> OutboundEmail:
        custom = (
            f"<p style=\"white-space: pre-line;\">{escape(message)}</p>" if message else ""
        )
        pay_url = f"{self.app_url}/payment?invoice={invoice_number}"
        body = (
            f"<p>Dear {escape(client_name)},</p>"
            f"{custom}"
            f"<p>Please find attached invoice <strong>#{escape(invoice_number)}</strong> "
            f"for <strong>{format_money(total, currency)}</strong>, "
            f"due on {due_date.strftime('%B %d, %Y')}.</p>"
            f"<p><a href=\"{escape(pay_url)}\" style=\"display: inline-block; padding: 12px 24px; "
            "background: #111827; color: #ffffff; text-decoration: none; border-radius: 4px;\">"
            "Pay Now</a></p>"
            "<p>Thank you for your business.</p>"
        )
        return OutboundEmail(
            to=to,
            subject=f"Invoice #{invoice_number}",
            html=_layout(f"Invoice #{invoice_number}", body, self.business_name),
            attachments=(EmailAttachment(filename=f"invoice-{invoice_number}.pdf", content=document),),
        )

    def password_reset_email(self, to: str, token: str) -> OutboundEmail:
        link = f"{self.app_url}/reset-password?{urlencode({'token': token, 'email': to})}"
        body = (
            "<p>We received a request to reset your password.</p>"
            f"<p><a href=\"{escape(link)}\">Reset your password</a></p>"
            "<p>This link expires in one hour. If you did not request a reset, "
            "you can ignore this email.</p>"
        )
        return OutboundEmail(
            to=to,
            subject=f"Password Reset Request - {self.business_name}",
            html=_layout("Password Reset", body, self.business_name),
        )

    def verification_email(self, to: str, display_name: str | None, token: str) -> OutboundEmail:
        link = f"{self.app_url}/verify-email?token={token}"
        greeting = f"Hi {escape(display_name)}," if display_name else "Hi,"
        body = (
            f"<p>{greeting}</p>"
            f"<p>Welcome to {escape(self.business_name)}. Please confirm your email address:</p>"
            f"<p><a href=\"{escape(link)}\">Verify email</a></p>"
            "<p>This link expires in 24 hours.</p>"
        )
        return OutboundEmail(
            to=to,
            subject=f"Verify your email - {self.business_name}",
            html=_layout("Verify your email", body, self.business_name),
        )

    def payment_confirmation_email(
        self,
        to: str,
        client_name: str,
        amount_paid: Decimal,
        description: str,
        invoice_number: str | None = None,
    ) -> OutboundEmail:
        reference = invoice_number or "your payment"
        subject = (
            f"Payment Confirmation - Invoice #{invoice_number}"
            if invoice_number
            else "Payment Confirmation"
        )
        body = (
            f"<p>Dear {escape(client_name)},</p>"
            f"<p>We have received your payment of <strong>{format_money(amount_paid)}</strong> "
            f"for {escape(description)} ({escape(reference)}).</p>"
            "<p>Thank you!</p>"
        )
        return OutboundEmail(
            to=to, subject=subject, html=_layout("Payment received", body, self.business_name)
        )

    def payment_updated_email(
        self, to: str, client_name: str, base_amount: Decimal, description: str
    ) -> OutboundEmail:
        link = f"{self.app_url}/payment/pending?{urlencode({'email': to})}"
        body = (
            f"<p>Dear {escape(client_name)},</p>"
            "<p>Your payment request has been updated.</p>"
            f"<p><strong>Amount:</strong> {format_money(base_amount)}<br>"
            f"<strong>Description:</strong> {escape(description)}</p>"
            f"<p><a href=\"{escape(link)}\">Review and pay</a></p>"
        )
        return OutboundEmail(
            to=to,
            subject=f"Payment Request Updated - {self.business_name}",
            html=_layout("Payment Request Updated", body, self.business_name),
        )

    def new_lead_email(self, to: str, lead_name: str, lead_email: str, challenges: str) -> OutboundEmail:
        body = (
            f"<p><strong>Name:</strong> {escape(lead_name)}<br>"
            f"<strong>Email:</strong> {escape(lead_email)}</p>"
            f"<p style=\"white-space: pre-line;\">{escape(challenges)}</p>"
        )
        return OutboundEmail(
            to=to,
            subject=f"New contact form submission from {lead_name}",
            html=_layout("New lead", body, self.business_name),
            reply_to=lead_email,
        )

    def test_email(self, to: str) -> OutboundEmail:
        body = "<p>This is a test email. Your SMTP configuration is working.</p>"
        return OutboundEmail(
            to=to,
            subject=f"Test Email - {self.business_name}",
            html=_layout("Email configuration test", body, self.business_name),
        )
