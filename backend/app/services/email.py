# backend/app/services/email.py
"""
Email delivery through the Resend API.

The service only delivers already-rendered HTML. Template rendering and the
"never raise to the caller" policy live in NotificationService.
"""

import logging
import re
from typing import Any, Dict, Optional

import resend

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import ServiceException
from .base import BaseService

logger = logging.getLogger(__name__)


class EmailService:
    """
    Service for sending emails using Resend API.

    Uses dependency injection: the settings object supplies the API key
    and default sender.
    """

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        api_key = config.resend_api_key
        if not api_key:
            raise ServiceException("Resend API key not configured")

        resend.api_key = api_key
        self.from_email = config.from_email
        self.logger = logging.getLogger(self.__class__.__name__)
        self.logger.info("EmailService initialized successfully")

    def _html_to_text(self, html_content: str) -> str:
        """Convert HTML content to plain text for better deliverability"""
        text = re.sub(r"<[^>]+>", "", html_content)
        text = re.sub(r"\s+", " ", text)
        return text.strip()

    @BaseService.measure_operation("send_email")
    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send a generic email using Resend.

        Returns:
            Dict containing the Resend API response

        Raises:
            ServiceException: If email sending fails
        """
        try:
            email_data = {
                "from": self.from_email,
                "to": to_email,
                "subject": subject,
                "html": html_content,
                "text": text_content or self._html_to_text(html_content),
            }
            response = resend.Emails.send(email_data)
            self.logger.info(f"Email sent successfully to {to_email} - Subject: {subject}")
            return dict(response) if response else {}
        except Exception as e:
            error_msg = str(e) if e else "Unknown error"
            self.logger.error(f"Failed to send email to {to_email}: {error_msg}")
            raise ServiceException(f"Email sending failed: {error_msg}") from e
