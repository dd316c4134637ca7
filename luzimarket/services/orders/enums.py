"""Composite order states, lifecycle events and the transition table.

An order's lifecycle is stored in four columns (``status``,
``payment_status``, ``cancellation_status``, ``refund_status``). Only a small
set of their combinations is meaningful; each is named by an ``OrderState``.
``TRANSITIONS`` lists every legal (state, event) pair together with the
column values the event writes. Anything not listed is rejected.

Reachable states and events:

- AWAITING_PAYMENT: payment_processing, payment_succeeded, payment_failed,
  request_cancellation
- PAID: ship, request_cancellation
- SHIPPED: deliver
- CANCELLATION_REQUESTED: request_cancellation (re-request), late payment
  events, approve_refund, approve_cancellation, reject_cancellation
- REFUND_PENDING: refund_succeeded, refund_failed
- DELIVERED, CANCELLED, REFUNDED, REFUND_FAILED: terminal
"""

from enum import Enum
from typing import Any, Dict, Optional, Set, Tuple

from luzimarket.database.models.order import (
    CancellationStatus,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
)

UNPAID_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.FAILED}
)
OPEN_CANCELLATION_STATUSES = frozenset(
    {CancellationStatus.NONE, CancellationStatus.REJECTED}
)


class OrderState(str, Enum):
    """Named combination of the four lifecycle columns."""

    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    CANCELLATION_REQUESTED = "cancellation_requested"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"
    REFUND_FAILED = "refund_failed"

    def is_terminal(self) -> bool:
        """Check if no event is accepted from this state."""
        return self in TERMINAL_STATES

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class OrderEvent(str, Enum):
    """Lifecycle events applied through the state machine."""

    PAYMENT_PROCESSING = "payment_processing"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    SHIP = "ship"
    DELIVER = "deliver"
    REQUEST_CANCELLATION = "request_cancellation"
    APPROVE_REFUND = "approve_refund"
    APPROVE_CANCELLATION = "approve_cancellation"
    REJECT_CANCELLATION = "reject_cancellation"
    REFUND_SUCCEEDED = "refund_succeeded"
    REFUND_FAILED = "refund_failed"

    @classmethod
    def from_string(cls, value: str) -> "OrderEvent":
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join(e.value for e in cls)
            raise ValueError(
                f"Invalid order event: {value}. Valid values are: {valid_values}"
            )


TERMINAL_STATES: frozenset = frozenset(
    {
        OrderState.DELIVERED,
        OrderState.CANCELLED,
        OrderState.REFUNDED,
        OrderState.REFUND_FAILED,
    }
)

_REFUND_STATES: Dict[RefundStatus, OrderState] = {
    RefundStatus.PENDING: OrderState.REFUND_PENDING,
    RefundStatus.SUCCEEDED: OrderState.REFUNDED,
    RefundStatus.FAILED: OrderState.REFUND_FAILED,
}

_APPROVED_REFUND_FIELDS: Dict[str, Any] = {
    "status": OrderStatus.REFUNDED,
    "payment_status": PaymentStatus.REFUNDED,
    "cancellation_status": CancellationStatus.APPROVED,
    "refund_status": RefundStatus.PENDING,
}

# (state, event) -> column assignments
TRANSITIONS: Dict[Tuple[OrderState, OrderEvent], Dict[str, Any]] = {
    (OrderState.AWAITING_PAYMENT, OrderEvent.PAYMENT_PROCESSING): {
        "payment_status": PaymentStatus.PROCESSING,
    },
    (OrderState.AWAITING_PAYMENT, OrderEvent.PAYMENT_SUCCEEDED): {
        "status": OrderStatus.PAID,
        "payment_status": PaymentStatus.SUCCEEDED,
    },
    (OrderState.AWAITING_PAYMENT, OrderEvent.PAYMENT_FAILED): {
        "payment_status": PaymentStatus.FAILED,
    },
    (OrderState.AWAITING_PAYMENT, OrderEvent.REQUEST_CANCELLATION): {
        "cancellation_status": CancellationStatus.REQUESTED,
    },
    (OrderState.PAID, OrderEvent.SHIP): {
        "status": OrderStatus.SHIPPED,
    },
    (OrderState.PAID, OrderEvent.REQUEST_CANCELLATION): {
        "cancellation_status": CancellationStatus.REQUESTED,
    },
    (OrderState.SHIPPED, OrderEvent.DELIVER): {
        "status": OrderStatus.DELIVERED,
    },
    (OrderState.CANCELLATION_REQUESTED, OrderEvent.REQUEST_CANCELLATION): {},
    (OrderState.CANCELLATION_REQUESTED, OrderEvent.PAYMENT_PROCESSING): {
        "payment_status": PaymentStatus.PROCESSING,
    },
    (OrderState.CANCELLATION_REQUESTED, OrderEvent.PAYMENT_SUCCEEDED): {
        "status": OrderStatus.PAID,
        "payment_status": PaymentStatus.SUCCEEDED,
    },
    (OrderState.CANCELLATION_REQUESTED, OrderEvent.PAYMENT_FAILED): {
        "payment_status": PaymentStatus.FAILED,
    },
    (OrderState.CANCELLATION_REQUESTED, OrderEvent.APPROVE_REFUND): dict(
        _APPROVED_REFUND_FIELDS
    ),
    (OrderState.CANCELLATION_REQUESTED, OrderEvent.APPROVE_CANCELLATION): {
        "status": OrderStatus.CANCELLED,
        "cancellation_status": CancellationStatus.APPROVED,
    },
    (OrderState.CANCELLATION_REQUESTED, OrderEvent.REJECT_CANCELLATION): {
        "cancellation_status": CancellationStatus.REJECTED,
    },
    (OrderState.REFUND_PENDING, OrderEvent.REFUND_SUCCEEDED): {
        "refund_status": RefundStatus.SUCCEEDED,
    },
    (OrderState.REFUND_PENDING, OrderEvent.REFUND_FAILED): {
        "refund_status": RefundStatus.FAILED,
    },
}


def derive_state(
    status: OrderStatus,
    payment_status: PaymentStatus,
    cancellation_status: CancellationStatus,
    refund_status: RefundStatus,
) -> Optional[OrderState]:
    """Name the composite state of four lifecycle column values.

    Args:
        status: Fulfillment status
        payment_status: Payment status
        cancellation_status: Cancellation approval state
        refund_status: Refund confirmation state

    Returns:
        The matching OrderState, or None for a combination that no sequence
        of legal transitions produces
    """
    if refund_status != RefundStatus.NONE:
        if (
            status == OrderStatus.REFUNDED
            and payment_status == PaymentStatus.REFUNDED
            and cancellation_status == CancellationStatus.APPROVED
        ):
            return _REFUND_STATES[refund_status]
        return None

    if cancellation_status == CancellationStatus.REQUESTED:
        if status == OrderStatus.PENDING and payment_status in UNPAID_PAYMENT_STATUSES:
            return OrderState.CANCELLATION_REQUESTED
        if status == OrderStatus.PAID and payment_status == PaymentStatus.SUCCEEDED:
            return OrderState.CANCELLATION_REQUESTED
        return None

    if cancellation_status == CancellationStatus.APPROVED:
        if status == OrderStatus.CANCELLED and payment_status in UNPAID_PAYMENT_STATUSES:
            return OrderState.CANCELLED
        return None

    # cancellation is none or rejected from here on
    if status == OrderStatus.PENDING and payment_status in UNPAID_PAYMENT_STATUSES:
        return OrderState.AWAITING_PAYMENT
    if payment_status == PaymentStatus.SUCCEEDED:
        if status == OrderStatus.PAID:
            return OrderState.PAID
        if status == OrderStatus.SHIPPED:
            return OrderState.SHIPPED
        if status == OrderStatus.DELIVERED:
            return OrderState.DELIVERED
    return None


def get_allowed_events(state: Optional[OrderState]) -> Set[OrderEvent]:
    """Get events listed for a state in the transition table.

    Guards evaluated by the state machine may still reject some of them.
    """
    if state is None:
        return set()
    return {event for (source, event) in TRANSITIONS if source == state}


def target_fields(state: OrderState, event: OrderEvent) -> Optional[Dict[str, Any]]:
    """Column assignments for a (state, event) pair, or None if not listed."""
    fields = TRANSITIONS.get((state, event))
    return dict(fields) if fields is not None else None
