"""
Email service for the billing service.

Sends transactional billing emails via SendGrid (failed payments, trial reminders).
"""

from datetime import datetime
from typing import Optional

import sendgrid
from sendgrid.helpers.mail import Mail, Email, To
from loguru import logger
from config.settings import get_settings


def format_amount(amount: int, currency: str) -> str:
    """Render minor units as e.g. '19.00 USD'."""
    return f"{amount / 100:.2f} {currency.upper()}"


class EmailService:
    """SendGrid email service wrapper."""

    def __init__(self):
        self.settings = get_settings()
        self.client = sendgrid.SendGridAPIClient(api_key=self.settings.sendgrid_api_key)

    async def send_payment_failed(
        self,
        to_email: str,
        amount: int,
        currency: str,
        invoice_url: Optional[str] = None,
        user_name: Optional[str] = None
    ) -> bool:
        """
        Notify a customer that a subscription payment failed.

        Args:
            to_email: Recipient email address
            amount: Amount due in minor units
            currency: ISO currency code
            invoice_url: Hosted invoice page where the customer can pay
            user_name: Optional user name for personalization

        Returns:
            True if email sent successfully, False otherwise
        """
        body = self._render_payment_failed(amount, currency, invoice_url, user_name)
        return self._send(to_email, "Your subscription payment failed", body)

    async def send_trial_ending(
        self,
        to_email: str,
        trial_end: Optional[datetime],
        user_name: Optional[str] = None
    ) -> bool:
        """Remind a customer that their trial is about to end."""
        body = self._render_trial_ending(trial_end, user_name)
        return self._send(to_email, "Your trial is ending soon", body)

    def _send(self, to_email: str, subject: str, body: str) -> bool:
        if self.settings.sendgrid_sandbox_mode:
            logger.info(f"[SANDBOX] Would send '{subject}' email to {to_email}")
            return True

        message = Mail(
            from_email=Email(self.settings.sendgrid_sender, "Billing"),
            to_emails=To(to_email),
            subject=subject,
            plain_text_content=body
        )

        try:
            response = self.client.send(message)
            logger.info(f"'{subject}' email sent to {to_email}, status: {response.status_code}")
            return response.status_code in (200, 202)
        except Exception as e:
            logger.error(f"Failed to send '{subject}' email to {to_email}: {e}")
            return False

    def _render_payment_failed(
        self, amount: int, currency: str, invoice_url: Optional[str], user_name: Optional[str]
    ) -> str:
        greeting = f"Hello {user_name}," if user_name else "Hello,"
        pay_line = f"\nYou can review and pay the invoice here:\n{invoice_url}\n" if invoice_url else ""
        return f"""{greeting}

We could not collect your subscription payment of {format_amount(amount, currency)}.
We will retry automatically over the next few days. To avoid an interruption,
please update your payment method.
{pay_line}
---
The Billing Team
"""

    def _render_trial_ending(self, trial_end: Optional[datetime], user_name: Optional[str]) -> str:
        greeting = f"Hello {user_name}," if user_name else "Hello,"
        when = trial_end.strftime("%B %d, %Y") if trial_end else "soon"
        return f"""{greeting}

Your free trial ends {"on " + when if trial_end else when}. Your subscription will start
automatically unless you cancel it from the billing page before then.

---
The Billing Team
"""
