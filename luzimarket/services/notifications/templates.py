"""
Email template engine with Jinja2.

Templates live next to this module in ``templates/``. Each email has a
``<name>_subject.txt`` and a ``<name>.html``, plus an optional ``<name>.txt``
plain-text body.
"""

from datetime import datetime
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Union

from jinja2 import (
    Environment,
    FileSystemLoader,
    Template,
    TemplateError,
    TemplateNotFound,
    select_autoescape,
)

from luzimarket.core.config import get_settings
from luzimarket.core.logging import get_logger

logger = get_logger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


class TemplateEngineError(Exception):
    """Base exception for template engine errors."""

    def __init__(self, message: str, template_name: Optional[str] = None):
        super().__init__(message)
        self.template_name = template_name


class TemplateNotFoundError(TemplateEngineError):
    """Raised when a template cannot be found."""

    pass


class TemplateRenderError(TemplateEngineError):
    """Raised when template rendering fails."""

    pass


class TemplateEngine:
    """Renders the Spanish notification emails."""

    def __init__(self, template_dir: Optional[str] = None, cache_size: int = 100):
        self.template_dir = Path(template_dir) if template_dir else TEMPLATE_DIR

        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            cache_size=cache_size,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["currency"] = self._format_currency
        self.env.filters["date"] = self._format_date
        self.env.globals["app_url"] = get_settings().app_url

    def render_email(self, template_name: str, context: Dict[str, Any]) -> Dict[str, str]:
        """
        Render an email template.

        Args:
            template_name: Template base name (without suffix)
            context: Template variables

        Returns:
            Dictionary with ``subject``, ``html_body`` and optionally ``text_body``

        Raises:
            TemplateNotFoundError: If the subject or HTML template is missing
            TemplateRenderError: If rendering fails
        """
        try:
            subject = self._load(f"{template_name}_subject.txt").render(**context).strip()
            html_body = self._load(f"{template_name}.html").render(**context)

            result = {"subject": subject, "html_body": html_body}
            try:
                result["text_body"] = self._load(f"{template_name}.txt").render(
                    **context
                )
            except TemplateNotFound:
                pass

            logger.debug(
                "Email template rendered",
                template_name=template_name,
                has_text_body="text_body" in result,
            )
            return result

        except TemplateNotFound as e:
            logger.error(
                "Email template not found",
                template_name=template_name,
                error=str(e),
            )
            raise TemplateNotFoundError(
                f"Email template not found: {template_name}",
                template_name=template_name,
            ) from e
        except TemplateError as e:
            logger.error(
                "Email template rendering failed",
                template_name=template_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TemplateRenderError(
                f"Failed to render email template: {str(e)}",
                template_name=template_name,
            ) from e

    def _load(self, template_path: str) -> Template:
        return self.env.get_template(template_path)

    @staticmethod
    def _format_currency(value: Union[Decimal, float, str], currency: str = "MXN") -> str:
        return f"${Decimal(str(value)):,.2f} {currency}"

    @staticmethod
    def _format_date(value: Union[datetime, str]) -> str:
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return value
        return value.strftime("%d/%m/%Y")


@lru_cache
def get_template_engine() -> TemplateEngine:
    return TemplateEngine()
