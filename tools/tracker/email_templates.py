"""
Reminder emails for the Warranty Tracker.

Renders the warranty-expiring and service-due notices (plain text + HTML)
and delivers them over SMTP.

SMTP sending defaults to off (copy-ready output: the message is logged and
counted as delivered); enable via config/settings.toml [email] section.
"""

import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

logger = logging.getLogger("tracker.email")

DEFAULT_APP_URL = "http://localhost:5173"
DEFAULT_FROM = "noreply@warrantytracker.com"


@dataclass
class EmailMessage:
    """A rendered email ready for delivery."""
    to_address: str
    subject: str
    body_text: str
    body_html: str


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _wrap_html(heading: str, paragraphs: list[str], link_url: str, link_label: str) -> str:
    """Wrap already-escaped paragraphs in an inline-CSS email layout."""
    body = "\n".join(
        f'        <p style="font-size: 16px; color: #333;">{p}</p>' for p in paragraphs
    )
    year = datetime.now(timezone.utc).year
    return f"""<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; border: 1px solid #e0e0e0; border-radius: 8px; overflow: hidden;">
      <div style="background-color: #4F46E5; padding: 20px; text-align: center;">
        <h2 style="color: #ffffff; margin: 0;">{html.escape(heading)}</h2>
      </div>
      <div style="padding: 20px; background-color: #ffffff;">
{body}
        <a href="{html.escape(link_url, quote=True)}" style="display: inline-block; margin-top: 20px; padding: 10px 20px; background-color: #EC4899; color: #ffffff; text-decoration: none; border-radius: 4px; font-weight: bold;">
          {html.escape(link_label)}
        </a>
      </div>
      <div style="background-color: #f5f5f5; padding: 15px; text-align: center; color: #777; font-size: 12px;">
        <p style="margin: 0;">&copy; {year} Warranty Tracker. All rights reserved.</p>
        <p style="margin: 5px 0 0 0;">You are receiving this because you opted into email notifications.</p>
      </div>
    </div>"""


def render_warranty_warning(
    to_address: str,
    user_name: str,
    product_name: str,
    days_left: int,
    app_url: str = DEFAULT_APP_URL,
) -> EmailMessage:
    """Warranty expiring notice, e.g. 'expiring in 7 days'."""
    link = f"{app_url.rstrip('/')}/products"
    name, product = html.escape(user_name or "there"), html.escape(product_name)
    paragraphs = [
        f"Hi <strong>{name}</strong>,",
        f"This is a friendly reminder that the warranty for your <strong>{product}</strong> "
        f"is expiring in <strong>{days_left} days</strong>.",
        "Please log in to your dashboard to review your coverage options or schedule "
        "a final maintenance check before the deadline.",
    ]
    text = (
        f"Hi {user_name or 'there'},\n\n"
        f"This is a friendly reminder that the warranty for your {product_name} "
        f"is expiring in {days_left} days.\n\n"
        "Please log in to your dashboard to review your coverage options or schedule "
        "a final maintenance check before the deadline.\n\n"
        f"View product details: {link}\n"
    )
    return EmailMessage(
        to_address=to_address,
        subject=f"ACTION REQUIRED: {product_name} Warranty Expiring",
        body_text=text,
        body_html=_wrap_html("Warranty Expiring Soon", paragraphs, link, "View Product Details"),
    )


def render_service_due(
    to_address: str,
    user_name: str,
    product_name: str,
    service_center: str,
    due_date: str,
    days_left: int,
    app_url: str = DEFAULT_APP_URL,
) -> EmailMessage:
    """Next-service-due notice for a product."""
    link = f"{app_url.rstrip('/')}/services"
    name, product = html.escape(user_name or "there"), html.escape(product_name)
    center = html.escape(service_center or "your service center")
    paragraphs = [
        f"Hi <strong>{name}</strong>,",
        f"The next service for your <strong>{product}</strong> is due in "
        f"<strong>{days_left} days</strong> ({html.escape(due_date)}).",
        f"Your last service was done at {center}. Book an appointment ahead of time "
        "so your warranty coverage is not affected.",
    ]
    text = (
        f"Hi {user_name or 'there'},\n\n"
        f"The next service for your {product_name} is due in {days_left} days ({due_date}).\n\n"
        f"Your last service was done at {service_center or 'your service center'}. "
        "Book an appointment ahead of time so your warranty coverage is not affected.\n\n"
        f"View service history: {link}\n"
    )
    return EmailMessage(
        to_address=to_address,
        subject=f"REMINDER: {product_name} Service Due",
        body_text=text,
        body_html=_wrap_html("Service Due Soon", paragraphs, link, "View Service History"),
    )


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

class Mailer:
    """SMTP client side of reminder delivery.

    Args:
        email_cfg: The [email] config section (ConfigSection or any object
                   exposing the same attributes). None means copy-ready mode.
    """

    def __init__(self, email_cfg: Any = None):
        self._cfg = email_cfg

    @property
    def enabled(self) -> bool:
        return bool(getattr(self._cfg, "enabled", False)) if self._cfg else False

    @property
    def app_url(self) -> str:
        return getattr(self._cfg, "app_url", DEFAULT_APP_URL) if self._cfg else DEFAULT_APP_URL

    def send(self, message: EmailMessage) -> bool:
        """Send a message via SMTP, or log it when SMTP is disabled.

        Returns True on success, False on failure. Never raises.
        """
        if not message.to_address:
            logger.warning("Email '%s' has no recipient, not sent", message.subject)
            return False

        if not self.enabled:
            # Copy-ready mode: nothing leaves the process
            logger.info("Email to %s logged (copy-ready mode): %s", message.to_address, message.subject)
            return True

        cfg = self._cfg
        try:
            smtp_host = getattr(cfg, "smtp_host", "")
            smtp_port = getattr(cfg, "smtp_port", 587)
            smtp_user = getattr(cfg, "smtp_user", "")
            smtp_password = getattr(cfg, "smtp_password", "")
            from_addr = getattr(cfg, "from_address", "") or DEFAULT_FROM
            use_tls = getattr(cfg, "use_tls", True)

            msg = MIMEMultipart("alternative")
            msg["Subject"] = message.subject
            msg["From"] = f"Warranty Tracker <{from_addr}>"
            msg["To"] = message.to_address

            msg.attach(MIMEText(message.body_text, "plain"))
            msg.attach(MIMEText(message.body_html, "html"))

            with smtplib.SMTP(smtp_host, smtp_port) as server:
                if use_tls:
                    server.starttls()
                if smtp_user:
                    server.login(smtp_user, smtp_password)
                server.sendmail(from_addr, [message.to_address], msg.as_string())

            logger.info("Email sent to %s: %s", message.to_address, message.subject)
            return True

        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send email to %s", message.to_address)
            return False
