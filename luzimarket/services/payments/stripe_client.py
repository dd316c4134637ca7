"""
Stripe API client wrapper with error handling and retry logic.

Wraps the synchronous ``stripe`` SDK calls used by settlement: payment
intents, refunds and webhook verification. Gateway failures surface as a
``StripeClientError`` hierarchy carrying the Stripe error code. Retries are
off by default so a request performs at most one outbound call per operation;
callers treat a failure as final for that request.
"""

import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional
from uuid import UUID

import stripe

from luzimarket.core.config import get_settings
from luzimarket.core.logging import get_logger

logger = get_logger(__name__)


class StripeClientError(Exception):
    """Base exception for Stripe client errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        stripe_error: Optional[stripe.StripeError] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.code = code
        self.stripe_error = stripe_error
        self.context = context


class StripePaymentError(StripeClientError):
    """Exception for declined or invalid payments."""

    pass


class StripeAuthenticationError(StripeClientError):
    """Exception for authentication errors."""

    pass


class StripeRateLimitError(StripeClientError):
    """Exception for rate limit errors."""

    pass


class StripeConnectionError(StripeClientError):
    """Exception for network errors and timeouts."""

    pass


def to_cents(amount: Decimal) -> int:
    """Convert a currency amount to integer minor units, rounding half up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeClient:
    """
    Stripe API client with error handling and retry logic.

    Args:
        api_key: Stripe secret API key (defaults to settings)
        webhook_secret: Stripe webhook signing secret (defaults to settings)
        max_retries: Retry attempts for connection, rate-limit and API errors
        initial_backoff: Initial backoff delay in seconds
        max_backoff: Maximum backoff delay in seconds
        backoff_multiplier: Backoff multiplier for exponential backoff
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        max_retries: Optional[int] = None,
        initial_backoff: float = 1.0,
        max_backoff: float = 8.0,
        backoff_multiplier: float = 2.0,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.max_retries = (
            settings.stripe_max_retries if max_retries is None else max_retries
        )
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier

        stripe.api_key = self.api_key
        stripe.max_network_retries = 0

    def _calculate_backoff(self, attempt: int) -> float:
        return min(
            self.initial_backoff * (self.backoff_multiplier**attempt),
            self.max_backoff,
        )

    def _should_retry(self, error: stripe.StripeError, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return isinstance(
            error,
            (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError),
        )

    def _execute_with_retry(
        self,
        operation: str,
        func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Execute a Stripe API call, retrying transient failures.

        Args:
            operation: Operation name for logging
            func: Stripe API function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result from the Stripe API call

        Raises:
            StripeClientError: If the operation fails
        """
        attempt = 0
        while True:
            try:
                result = func(*args, **kwargs)
                if attempt > 0:
                    logger.info(
                        "Stripe operation succeeded after retry",
                        operation=operation,
                        attempt=attempt,
                    )
                return result

            except stripe.AuthenticationError as e:
                logger.error(
                    "Stripe authentication error", operation=operation, error=str(e)
                )
                raise StripeAuthenticationError(
                    f"Authentication failed: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except stripe.CardError as e:
                logger.warning(
                    "Stripe card error",
                    operation=operation,
                    error=str(e),
                    code=e.code,
                )
                raise StripePaymentError(
                    f"Card error: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except stripe.InvalidRequestError as e:
                logger.error(
                    "Stripe invalid request",
                    operation=operation,
                    error=str(e),
                    code=e.code,
                    param=e.param,
                )
                raise StripePaymentError(
                    f"Invalid request: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                    param=e.param,
                ) from e

            except stripe.IdempotencyError as e:
                logger.error(
                    "Stripe idempotency error", operation=operation, error=str(e)
                )
                raise StripeClientError(
                    f"Idempotency error: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except (
                stripe.RateLimitError,
                stripe.APIConnectionError,
                stripe.APIError,
            ) as e:
                if not self._should_retry(e, attempt):
                    logger.error(
                        "Stripe operation failed",
                        operation=operation,
                        error=str(e),
                        error_type=type(e).__name__,
                        attempt=attempt,
                    )
                    if isinstance(e, stripe.RateLimitError):
                        error_cls = StripeRateLimitError
                    elif isinstance(e, stripe.APIConnectionError):
                        error_cls = StripeConnectionError
                    else:
                        error_cls = StripeClientError
                    raise error_cls(
                        f"Stripe unavailable: {e.user_message or str(e)}",
                        code=e.code,
                        stripe_error=e,
                    ) from e

                backoff = self._calculate_backoff(attempt)
                logger.warning(
                    "Transient Stripe error, retrying",
                    operation=operation,
                    error_type=type(e).__name__,
                    attempt=attempt,
                    backoff_seconds=backoff,
                )
                time.sleep(backoff)
                attempt += 1

            except stripe.StripeError as e:
                logger.error(
                    "Unexpected Stripe error",
                    operation=operation,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise StripeClientError(
                    f"Stripe error: {e.user_message or str(e)}",
                    code=getattr(e, "code", None),
                    stripe_error=e,
                ) from e

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        order_id: Optional[UUID] = None,
        customer_email: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> stripe.PaymentIntent:
        """
        Create a Stripe payment intent.

        Args:
            amount: Payment amount in cents
            currency: Three-letter ISO currency code
            order_id: Associated order ID, stored in the intent metadata
            customer_email: Customer email for the receipt
            metadata: Additional metadata for the payment
            idempotency_key: Idempotency key for safe retries

        Returns:
            Stripe PaymentIntent object

        Raises:
            StripeClientError: If payment intent creation fails
        """
        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_email:
            params["receipt_email"] = customer_email

        intent_metadata = dict(metadata or {})
        if order_id:
            intent_metadata["orderId"] = str(order_id)
        if intent_metadata:
            params["metadata"] = intent_metadata
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        payment_intent = self._execute_with_retry(
            "create_payment_intent", stripe.PaymentIntent.create, **params
        )

        logger.info(
            "Payment intent created",
            payment_intent_id=payment_intent.id,
            amount=amount,
            currency=currency,
            order_id=str(order_id) if order_id else None,
        )
        return payment_intent

    def retrieve_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        return self._execute_with_retry(
            "retrieve_payment_intent",
            stripe.PaymentIntent.retrieve,
            payment_intent_id,
        )

    def create_refund(
        self,
        payment_intent_id: str,
        amount: int,
        reason: str = "requested_by_customer",
        metadata: Optional[dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> stripe.Refund:
        """
        Refund a captured payment intent.

        Args:
            payment_intent_id: Payment intent to refund
            amount: Amount in cents
            reason: Stripe refund reason
            metadata: Refund metadata
            idempotency_key: Idempotency key; the same key returns the same refund

        Returns:
            Stripe Refund object

        Raises:
            StripeClientError: If the refund cannot be created
        """
        params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "amount": amount,
            "reason": reason,
        }
        if metadata:
            params["metadata"] = metadata
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        refund = self._execute_with_retry("create_refund", stripe.Refund.create, **params)

        logger.info(
            "Refund created",
            refund_id=refund.id,
            payment_intent_id=payment_intent_id,
            amount=amount,
            refund_status=getattr(refund, "status", None),
        )
        return refund

    def construct_webhook_event(self, payload: bytes, signature: str) -> stripe.Event:
        """
        Construct and verify a webhook event from Stripe.

        Args:
            payload: Raw webhook payload bytes, exactly as received
            signature: ``Stripe-Signature`` header value

        Returns:
            Verified Stripe Event object

        Raises:
            StripeClientError: ``INVALID_PAYLOAD`` or ``INVALID_SIGNATURE``
        """
        try:
            event = stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret
            )
        except ValueError as e:
            logger.error("Invalid webhook payload", error=str(e))
            raise StripeClientError(
                f"Invalid payload: {e}", code="INVALID_PAYLOAD"
            ) from e
        except stripe.SignatureVerificationError as e:
            logger.error("Webhook signature verification failed", error=str(e))
            raise StripeClientError(
                str(e) or "Signature verification failed",
                code="INVALID_SIGNATURE",
                stripe_error=e,
            ) from e

        logger.info(
            "Webhook event verified", event_id=event.id, event_type=event.type
        )
        return event

    def format_amount(self, amount: int, currency: str) -> str:
        decimal_amount = Decimal(amount) / Decimal(100)
        return f"{decimal_amount:.2f} {currency.upper()}"


def get_stripe_client() -> StripeClient:
    return StripeClient()
