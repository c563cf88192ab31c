# backend/app/services/notification_service.py
"""
Notification Service for payment events.

Renders a named Jinja2 template and hands the HTML to the configured email
backend. Delivery is fire-and-forget: every failure (unknown template,
provider error) is logged and counted, never raised, so a notification
problem can never fail or roll back the payment state change that
triggered it.
"""

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Mapping, Optional, Protocol

from jinja2.exceptions import TemplateNotFound

from ..core.config import Settings, settings as default_settings
from ..monitoring.prometheus_metrics import prometheus_metrics
from .email_console import ConsoleEmailService
from .template_service import TemplateService

logger = logging.getLogger(__name__)


class EmailBackend(Protocol):
    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class EmailNotification:
    """A notification collected during webhook handling, sent after commit."""

    to: str
    subject: str
    template: str
    data: Dict[str, Any] = field(default_factory=dict)


def build_email_backend(config: Optional[Settings] = None) -> EmailBackend:
    """Pick the email backend from settings (Resend when configured, console otherwise)."""
    config = config or default_settings
    if config.email_provider == "resend" and config.resend_api_key and config.email_enabled:
        from .email import EmailService

        return EmailService(config)
    if config.email_provider == "resend":
        logger.warning("Resend selected but not configured; falling back to console email")
    return ConsoleEmailService()


class NotificationService:
    """Central notification sender for payment events."""

    def __init__(
        self,
        email_service: Optional[EmailBackend] = None,
        template_service: Optional[TemplateService] = None,
    ) -> None:
        self.email_service = email_service or build_email_backend()
        self.template_service = template_service or TemplateService()
        self.logger = logging.getLogger(self.__class__.__name__)

    def send_email(
        self,
        to: Optional[str],
        subject: str,
        template: str,
        data: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """
        Render ``template`` with ``data`` and send it to ``to``.

        Returns:
            True when the backend accepted the message, False otherwise
        """
        if not to:
            self.logger.warning(f"Skipping {template} email: no recipient")
            prometheus_metrics.inc_notification(template, "skipped")
            return False
        try:
            html_content = self.template_service.render_template(template, data or {})
            self.email_service.send_email(to_email=to, subject=subject, html_content=html_content)
        except TemplateNotFound:
            self.logger.error(f"Email template not found: {template}")
            prometheus_metrics.inc_notification(template, "error")
            return False
        except Exception as e:
            self.logger.error(f"Failed to send {template} email to {to}: {str(e)}")
            prometheus_metrics.inc_notification(template, "error")
            return False

        prometheus_metrics.inc_notification(template, "sent")
        return True

    def send(self, notification: EmailNotification) -> bool:
        return self.send_email(
            notification.to, notification.subject, notification.template, notification.data
        )
