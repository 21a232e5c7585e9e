"""
core/email.py: Email Notifications
=====================================
Verification and transfer notices to property owners, alerts to the admin.
SMTP is blocking, so each send runs in a worker thread.
Port 587 uses STARTTLS; port 465 uses implicit TLS.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Optional

from config import settings
from core.errors import EmailError

logger = logging.getLogger("deedchain.email")

_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background: #0A192F; color: #64FFDA; padding: 20px; text-align: center; }}
    .content {{ background: #f9f9f9; padding: 20px; }}
    .footer {{ background: #ddd; padding: 10px; text-align: center; font-size: 12px; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>DeedChain</h1>
      <p>Land Ownership &amp; Tokenization Platform</p>
    </div>
    <div class="content">
      <h2>{subject}</h2>
      <p>{content}</p>
    </div>
    <div class="footer">
      <p>This is an automated message from DeedChain. Please do not reply to this email.</p>
    </div>
  </div>
</body>
</html>
"""


def wrap_in_template(subject: str, content: str) -> str:
    return _TEMPLATE.format(subject=escape(subject), content=escape(content))


class EmailService:

    @property
    def enabled(self) -> bool:
        return bool(settings.SMTP_HOST)

    async def send_verification_notification(self, user_email: Optional[str], property_title: str, approved: bool):
        if not user_email:
            return
        if approved:
            subject = "Property Verification Approved - DeedChain"
            message = (f'Your property "{property_title}" has been successfully verified '
                       "and is now registered on the blockchain.")
        else:
            subject = "Property Verification Update - DeedChain"
            message = (f'Your property "{property_title}" requires additional verification. '
                       "Please check your dashboard for details.")
        await self.send_email(user_email, subject, message)

    async def send_transfer_notification(self, user_email: Optional[str], property_title: str, is_recipient: bool):
        if not user_email:
            return
        if is_recipient:
            subject = "Property Transfer Received - DeedChain"
            message = (f'You have received a property transfer for "{property_title}". '
                       "The deed is now registered to your wallet.")
        else:
            subject = "Property Transfer Completed - DeedChain"
            message = (f'Your transfer of "{property_title}" has been executed on the blockchain. '
                       "Ownership has moved to the recipient.")
        await self.send_email(user_email, subject, message)

    async def send_admin_alert(self, subject: str, message: str):
        if not settings.ADMIN_EMAIL:
            return
        await self.send_email(settings.ADMIN_EMAIL, f"ADMIN: {subject}", message)

    def build_message(self, to: str, subject: str, text: str, html: Optional[str] = None) -> EmailMessage:
        sender = settings.SMTP_FROM or settings.SMTP_USER
        msg = EmailMessage()
        msg["From"] = f"DeedChain <{sender}>"
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        msg.add_alternative(html or wrap_in_template(subject, text), subtype="html")
        return msg

    def _deliver(self, msg: EmailMessage):
        if settings.SMTP_PORT == 465:
            with smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=20) as s:
                if settings.SMTP_USER:
                    s.login(settings.SMTP_USER, settings.SMTP_PASS)
                s.send_message(msg)
            return

        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=20) as s:
            s.ehlo()
            if s.has_extn("starttls"):
                s.starttls()
                s.ehlo()
            if settings.SMTP_USER:
                s.login(settings.SMTP_USER, settings.SMTP_PASS)
            s.send_message(msg)

    async def send_email(self, to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        """Returns False when SMTP is not configured and the mail was only logged."""
        if not self.enabled:
            logger.info(f"SMTP not configured, skipping email to {to}: {subject}")
            return False
        msg = self.build_message(to, subject, text, html)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            raise EmailError("Email service temporarily unavailable") from e
        logger.info(f"Email sent to {to}: {subject}")
        return True


# Singleton instance: import this everywhere
email_service = EmailService()
