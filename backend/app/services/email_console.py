import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ConsoleEmailService:
    """Email service that only logs, used in development and when Resend is not configured."""

    def __init__(self, *_: Any, **__: Any) -> None:
        self.sent: list[Dict[str, str]] = []

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> Dict[str, Any]:
        logger.info(f"[console email] to={to_email} subject={subject!r}")
        self.sent.append({"to": to_email, "subject": subject, "html": html_content})
        return {"id": f"console-{len(self.sent)}"}
