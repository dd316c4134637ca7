"""
AWS SES email delivery.

``SESClient`` is a thin synchronous boto3 wrapper with retry logic.
``EmailSender`` is what the settlement services use: it renders a template,
sends it off the event loop and never raises. Delivery failures are logged
and reported through the return value only.
"""

import asyncio
import time
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from luzimarket.core.config import get_settings
from luzimarket.core.logging import get_logger
from luzimarket.services.notifications.templates import (
    TemplateEngine,
    TemplateEngineError,
    get_template_engine,
)

logger = get_logger(__name__)

NON_RETRYABLE_SES_ERRORS = frozenset(
    {
        "MessageRejected",
        "MailFromDomainNotVerified",
        "ConfigurationSetDoesNotExist",
    }
)


class AWSClientError(Exception):
    """Base exception for AWS client errors."""

    def __init__(self, message: str, service: str, **context: Any) -> None:
        super().__init__(message)
        self.service = service
        self.context = context


class SESClientError(AWSClientError):
    """Exception for SES-specific errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, service="SES", **context)


class SESClient:
    """
    AWS SES client wrapper with error handling and retry logic.

    Args:
        aws_access_key_id: AWS access key ID (defaults to settings)
        aws_secret_access_key: AWS secret access key (defaults to settings)
        region_name: AWS region name (defaults to settings)
        max_retries: Maximum number of send attempts
        retry_backoff: Initial backoff time in seconds for retries
    """

    def __init__(
        self,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        region_name: Optional[str] = None,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
    ) -> None:
        settings = get_settings()
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.default_from = settings.email_from
        self._client = boto3.client(
            "ses",
            aws_access_key_id=aws_access_key_id or settings.aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key
            or settings.aws_secret_access_key,
            region_name=region_name or settings.aws_region,
        )

    def send_email(
        self,
        to_addresses: list[str],
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
        from_address: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Send an email via AWS SES.

        Returns:
            Dictionary containing the SES message id and delivery status

        Raises:
            SESClientError: If sending fails after retries
        """
        if not to_addresses:
            raise SESClientError(
                "At least one recipient email address is required",
                to_addresses=to_addresses,
            )

        from_address = from_address or self.default_from
        body: dict[str, Any] = {"Html": {"Data": body_html, "Charset": "UTF-8"}}
        if body_text:
            body["Text"] = {"Data": body_text, "Charset": "UTF-8"}

        send_params: dict[str, Any] = {
            "Source": from_address,
            "Destination": {"ToAddresses": to_addresses},
            "Message": {
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": body,
            },
        }

        last_exception: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                response = self._client.send_email(**send_params)
                message_id = response["MessageId"]
                logger.info(
                    "Email sent via SES",
                    message_id=message_id,
                    to_addresses=to_addresses,
                    attempt=attempt + 1,
                )
                return {
                    "message_id": message_id,
                    "status": "sent",
                    "to_addresses": to_addresses,
                    "subject": subject,
                }

            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")
                error_message = e.response.get("Error", {}).get("Message", str(e))
                logger.warning(
                    "SES client error",
                    attempt=attempt + 1,
                    error_code=error_code,
                    error_message=error_message,
                    to_addresses=to_addresses,
                )
                last_exception = e

                if error_code in NON_RETRYABLE_SES_ERRORS:
                    raise SESClientError(
                        f"SES error: {error_message}",
                        error_code=error_code,
                        to_addresses=to_addresses,
                    ) from e

            except BotoCoreError as e:
                logger.warning(
                    "SES connection error",
                    attempt=attempt + 1,
                    error=str(e),
                    to_addresses=to_addresses,
                )
                last_exception = e

            if attempt < self.max_retries - 1:
                time.sleep(self.retry_backoff * (2**attempt))

        raise SESClientError(
            f"Failed to send email after {self.max_retries} attempts",
            to_addresses=to_addresses,
            last_error=str(last_exception),
        ) from last_exception


class EmailSender:
    """
    Fire-and-forget email notifications.

    When email is disabled in settings, messages are rendered and logged but
    not delivered.
    """

    def __init__(
        self,
        ses_client: Optional[SESClient] = None,
        template_engine: Optional[TemplateEngine] = None,
        enabled: Optional[bool] = None,
    ):
        settings = get_settings()
        self.enabled = settings.email_enabled if enabled is None else enabled
        self.admin_email = settings.admin_alert_email
        self.template_engine = template_engine or get_template_engine()
        self._ses_client = ses_client

    @property
    def ses_client(self) -> SESClient:
        if self._ses_client is None:
            self._ses_client = SESClient()
        return self._ses_client

    async def send(
        self, to: Optional[str], template_name: str, context: dict[str, Any]
    ) -> bool:
        """
        Render and send one email.

        Returns:
            True if the message was handed to SES, False otherwise
        """
        if not to or "@" not in to:
            logger.info(
                "No valid recipient for email", template_name=template_name
            )
            return False

        try:
            rendered = self.template_engine.render_email(template_name, context)
        except TemplateEngineError as e:
            logger.error(
                "Email rendering failed",
                template_name=template_name,
                error=str(e),
            )
            return False

        if not self.enabled:
            logger.info(
                "Email delivery disabled, skipping send",
                template_name=template_name,
                to=to,
                subject=rendered["subject"],
            )
            return False

        try:
            await asyncio.to_thread(
                self.ses_client.send_email,
                [to],
                rendered["subject"],
                rendered["html_body"],
                rendered.get("text_body"),
            )
        except (SESClientError, BotoCoreError, ClientError) as e:
            logger.error(
                "Email delivery failed",
                template_name=template_name,
                to=to,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True

    async def send_admin_alert(
        self, template_name: str, context: dict[str, Any]
    ) -> bool:
        if not self.admin_email:
            logger.warning(
                "Admin alert email not configured", template_name=template_name
            )
            return False
        return await self.send(self.admin_email, template_name, context)


def get_email_sender() -> EmailSender:
    return EmailSender()
