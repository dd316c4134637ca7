"""
Tests for email rendering and delivery.

Covers the Jinja2 templates, the SES client retry behavior and the
never-raising EmailSender used by the settlement services.
"""

from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from luzimarket.services.notifications.email import (
    EmailSender,
    SESClient,
    SESClientError,
)
from luzimarket.services.notifications.templates import (
    TemplateEngine,
    TemplateNotFoundError,
)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def template_engine() -> TemplateEngine:
    return TemplateEngine()


@pytest.fixture
def boto_client() -> Mock:
    """
    Patched boto3 SES client.

    Yields:
        Mock: Client returned by ``boto3.client``
    """
    client = Mock()
    client.send_email.return_value = {"MessageId": "msg-123"}
    with patch(
        "luzimarket.services.notifications.email.boto3.client", return_value=client
    ):
        yield client


@pytest.fixture
def ses_client(boto_client) -> SESClient:
    return SESClient(
        aws_access_key_id="test", aws_secret_access_key="test", region_name="us-east-1"
    )


def client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "SendEmail")


# ============================================================================
# Template Tests
# ============================================================================


class TestTemplateEngine:
    """Test email template rendering."""

    def test_refund_processed(self, template_engine):
        """Test that amounts are formatted and the subject is trimmed."""
        rendered = template_engine.render_email(
            "refund_processed",
            {
                "customer_name": "Ana López",
                "order_number": "LM-1001",
                "amount": Decimal("1500.00"),
                "currency": "MXN",
                "refund_id": "re_123",
            },
        )

        assert rendered["subject"] == "Reembolso procesado #LM-1001 - Luzimarket"
        assert "$1,500.00 MXN" in rendered["html_body"]
        assert "re_123" in rendered["html_body"]
        assert "text_body" not in rendered

    def test_plain_text_body_when_present(self, template_engine):
        """Test that the admin alert carries a plain-text part."""
        rendered = template_engine.render_email(
            "refund_failed_admin",
            {"order_number": "LM-1001", "refund_id": "re_123", "reason": None},
        )

        assert "Motivo: Razón desconocida" in rendered["text_body"]

    def test_unknown_template(self, template_engine):
        with pytest.raises(TemplateNotFoundError):
            template_engine.render_email("does_not_exist", {})


# ============================================================================
# SES Client Tests
# ============================================================================


class TestSESClient:
    """Test SES delivery and retries."""

    def test_send_email(self, ses_client, boto_client):
        result = ses_client.send_email(["ana@example.com"], "Hola", "<p>Hola</p>", "Hola")

        assert result["message_id"] == "msg-123"
        params = boto_client.send_email.call_args.kwargs
        assert params["Destination"] == {"ToAddresses": ["ana@example.com"]}
        assert params["Message"]["Body"]["Text"]["Data"] == "Hola"

    def test_requires_recipient(self, ses_client):
        with pytest.raises(SESClientError):
            ses_client.send_email([], "Hola", "<p>Hola</p>")

    def test_rejected_message_not_retried(self, ses_client, boto_client):
        """Test that a permanent rejection fails immediately."""
        boto_client.send_email.side_effect = client_error("MessageRejected")

        with pytest.raises(SESClientError):
            ses_client.send_email(["ana@example.com"], "Hola", "<p>Hola</p>")

        assert boto_client.send_email.call_count == 1

    def test_transient_error_retried(self, ses_client, boto_client):
        """Test that a throttled send is retried with backoff."""
        boto_client.send_email.side_effect = [
            client_error("Throttling"),
            {"MessageId": "msg-456"},
        ]

        with patch("luzimarket.services.notifications.email.time.sleep") as sleep:
            result = ses_client.send_email(["ana@example.com"], "Hola", "<p>Hola</p>")

        assert result["message_id"] == "msg-456"
        sleep.assert_called_once_with(1.0)

    def test_gives_up_after_max_retries(self, ses_client, boto_client):
        boto_client.send_email.side_effect = EndpointConnectionError(
            endpoint_url="https://email.us-east-1.amazonaws.com"
        )

        with patch("luzimarket.services.notifications.email.time.sleep"):
            with pytest.raises(SESClientError):
                ses_client.send_email(["ana@example.com"], "Hola", "<p>Hola</p>")

        assert boto_client.send_email.call_count == 3


# ============================================================================
# Email Sender Tests
# ============================================================================


class TestEmailSender:
    """Test the notification facade used by the services."""

    @pytest.fixture
    def ses(self) -> Mock:
        return Mock(spec=SESClient)

    @pytest.fixture
    def context(self) -> dict:
        return {
            "customer_name": "Ana López",
            "order_number": "LM-1001",
            "total": Decimal("500.00"),
            "currency": "MXN",
            "failure_message": "Tarjeta rechazada",
        }

    async def test_sends_when_enabled(self, ses, context):
        sender = EmailSender(ses_client=ses, enabled=True)

        sent = await sender.send("ana@example.com", "payment_failed", context)

        assert sent is True
        to_addresses, subject = ses.send_email.call_args.args[:2]
        assert to_addresses == ["ana@example.com"]
        assert "LM-1001" in subject

    async def test_disabled_does_not_deliver(self, ses, context):
        """Test that disabled delivery renders but does not send."""
        sender = EmailSender(ses_client=ses, enabled=False)

        sent = await sender.send("ana@example.com", "payment_failed", context)

        assert sent is False
        ses.send_email.assert_not_called()

    @pytest.mark.parametrize("to", [None, "", "no-at-sign"])
    async def test_invalid_recipient(self, ses, context, to):
        sender = EmailSender(ses_client=ses, enabled=True)

        assert await sender.send(to, "payment_failed", context) is False
        ses.send_email.assert_not_called()

    async def test_delivery_failure_is_swallowed(self, ses, context):
        """Test that an SES failure is reported through the return value."""
        ses.send_email.side_effect = SESClientError("Failed to send email after 3 attempts")
        sender = EmailSender(ses_client=ses, enabled=True)

        assert await sender.send("ana@example.com", "payment_failed", context) is False

    async def test_missing_template(self, ses):
        sender = EmailSender(ses_client=ses, enabled=True)

        assert await sender.send("ana@example.com", "does_not_exist", {}) is False

    async def test_admin_alert_goes_to_configured_address(self, ses):
        sender = EmailSender(ses_client=ses, enabled=True)
        sender.admin_email = "ops@luzimarket.shop"

        sent = await sender.send_admin_alert(
            "refund_failed_admin",
            {"order_number": "LM-1001", "refund_id": "re_1", "reason": "lost_or_stolen_card"},
        )

        assert sent is True
        assert ses.send_email.call_args.args[0] == ["ops@luzimarket.shop"]

    async def test_admin_alert_without_address(self, ses):
        sender = EmailSender(ses_client=ses, enabled=True)
        sender.admin_email = None

        assert await sender.send_admin_alert("refund_failed_admin", {}) is False
