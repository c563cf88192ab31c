# backend/app/services/template_service.py
"""
Template rendering for payment notification emails.

Templates live under ``app/templates/email`` and are addressed by their
short name (``payment-failed`` renders ``email/payment-failed.html``).
Rendering is strict about template names (an unknown name raises) but
lenient about missing context values, which render as empty strings.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from jinja2 import Environment, FileSystemLoader, TemplateNotFound

from ..core.constants import BRAND_NAME

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates"
EMAIL_TEMPLATE_PREFIX = "email/"
LAYOUT_TEMPLATE = "layout"


class TemplateService:
    """
    Centralized email template rendering using Jinja2.

    Common context variables (brand name) are merged into every render.
    """

    def __init__(self, template_dir: Optional[Path] = None):
        template_dir = template_dir or TEMPLATE_DIR
        self.env = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=True,  # Enable autoescaping for security
            trim_blocks=True,
            lstrip_blocks=True,
        )
        logger.debug(f"Template service initialized with template directory: {template_dir}")

    @staticmethod
    def _path_for(template_name: str) -> str:
        return f"{EMAIL_TEMPLATE_PREFIX}{template_name}.html"

    def get_common_context(self) -> Dict[str, Any]:
        return {"brand_name": BRAND_NAME}

    def list_templates(self) -> List[str]:
        """Short names of every email template except the shared layout."""
        names = []
        for path in self.env.list_templates(extensions=["html"]):
            if not path.startswith(EMAIL_TEMPLATE_PREFIX):
                continue
            name = path[len(EMAIL_TEMPLATE_PREFIX) : -len(".html")]
            if name != LAYOUT_TEMPLATE:
                names.append(name)
        return sorted(names)

    def template_exists(self, template_name: str) -> bool:
        try:
            self.env.get_template(self._path_for(template_name))
            return True
        except TemplateNotFound:
            return False

    def render_template(self, template_name: str, context: Mapping[str, Any] | None = None) -> str:
        """
        Render a template with the given context.

        Raises:
            TemplateNotFound: If the template name is unknown
        """
        template = self.env.get_template(self._path_for(template_name))
        full_context = self.get_common_context()
        full_context.update(context or {})
        return template.render(**full_context)
