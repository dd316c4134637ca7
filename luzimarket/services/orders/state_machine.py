"""Order state machine implementation with transition validation.

This module implements the OrderStateMachine class, the only writer of an
order's lifecycle columns. Transitions are looked up in the explicit table in
``luzimarket.services.orders.enums``, checked against guards, applied to the
order instance and recorded in ``order_status_history``. The caller owns the
unit of work: nothing here commits.
"""

from typing import Any, Callable, Dict, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.core.logging import get_logger
from luzimarket.database.models.order import Order, OrderStatusHistory, PaymentStatus
from luzimarket.services.orders.enums import (
    OrderEvent,
    OrderState,
    derive_state,
    get_allowed_events,
    target_fields,
)

logger = get_logger(__name__)


class StateTransitionError(Exception):
    """Raised when an event is not legal for the order's current state."""

    def __init__(
        self,
        message: str,
        current_state: Optional[OrderState],
        event: OrderEvent,
        **context: Any,
    ):
        super().__init__(message)
        self.current_state = current_state
        self.event = event
        self.context = context


class OrderStateMachine:
    """State machine for order lifecycle transitions.

    Attributes:
        session: Database session the history rows are added to
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._guards: Dict[
            Tuple[OrderState, OrderEvent], Callable[[Order], bool]
        ] = self._initialize_guards()

    def _initialize_guards(
        self,
    ) -> Dict[Tuple[OrderState, OrderEvent], Callable[[Order], bool]]:
        """Initialize transition guard functions.

        Returns:
            Dictionary mapping (state, event) pairs to guard functions
        """
        requested = OrderState.CANCELLATION_REQUESTED
        return {
            (requested, OrderEvent.APPROVE_REFUND): self._guard_payment_captured,
            (requested, OrderEvent.APPROVE_CANCELLATION): self._guard_payment_not_captured,
            (requested, OrderEvent.PAYMENT_PROCESSING): self._guard_payment_not_captured,
            (requested, OrderEvent.PAYMENT_SUCCEEDED): self._guard_payment_not_captured,
            (requested, OrderEvent.PAYMENT_FAILED): self._guard_payment_not_captured,
        }

    def current_state(self, order: Order) -> Optional[OrderState]:
        """Composite state of an order, or None if its columns are inconsistent."""
        return derive_state(
            order.status,
            order.payment_status,
            order.cancellation_status,
            order.refund_status,
        )

    def validate_transition(
        self, order: Order, event: OrderEvent
    ) -> Tuple[OrderState, Dict[str, Any]]:
        """Validate that an event may be applied to an order.

        Args:
            order: Order instance to validate
            event: Lifecycle event

        Returns:
            The current state and the column assignments the event performs

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        state = self.current_state(order)
        if state is None:
            raise StateTransitionError(
                f"Order {order.order_number} has an unrecognized lifecycle "
                f"combination; {event.value} rejected",
                current_state=None,
                event=event,
                status=order.status.value,
                payment_status=order.payment_status.value,
                cancellation_status=order.cancellation_status.value,
                refund_status=order.refund_status.value,
            )

        fields = target_fields(state, event)
        if fields is None:
            raise StateTransitionError(
                f"Event {event.value} is not allowed in state {state.value}",
                current_state=state,
                event=event,
                allowed_events=sorted(e.value for e in get_allowed_events(state)),
            )

        guard = self._guards.get((state, event))
        if guard is not None and not guard(order):
            raise StateTransitionError(
                f"Transition guard failed for {state.value} -> {event.value}",
                current_state=state,
                event=event,
                guard_failed=True,
            )

        return state, fields

    def can_apply(self, order: Order, event: OrderEvent) -> bool:
        """Check whether an event is currently legal, without raising."""
        try:
            self.validate_transition(order, event)
        except StateTransitionError:
            return False
        return True

    def apply_transition(
        self,
        order: Order,
        event: OrderEvent,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OrderState:
        """Apply an event to an order and record it in the status history.

        Args:
            order: Order instance to transition
            event: Lifecycle event
            actor: Identifier of who triggered the event
            reason: Optional reason for the transition
            metadata: Additional context stored with the history row

        Returns:
            The resulting composite state

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        from_state, fields = self.validate_transition(order, event)

        for column, value in fields.items():
            setattr(order, column, value)

        to_state = self.current_state(order)

        self.session.add(
            OrderStatusHistory(
                order_id=order.id,
                event=event.value,
                from_state=from_state.value,
                to_state=to_state.value,
                changed_by=actor,
                reason=reason,
                metadata_=metadata or {},
            )
        )

        logger.info(
            "Order transition applied",
            order_id=str(order.id),
            order_number=order.order_number,
            order_event=event.value,
            transition=f"{from_state.value}->{to_state.value}",
            actor=actor,
        )

        return to_state

    def get_allowed_events(self, order: Order) -> Set[OrderEvent]:
        """Events the order accepts right now, guards included."""
        state = self.current_state(order)
        return {
            event for event in get_allowed_events(state) if self.can_apply(order, event)
        }

    # Transition Guards

    def _guard_payment_captured(self, order: Order) -> bool:
        return order.payment_status == PaymentStatus.SUCCEEDED

    def _guard_payment_not_captured(self, order: Order) -> bool:
        return order.payment_status != PaymentStatus.SUCCEEDED


def get_order_state_machine(session: AsyncSession) -> OrderStateMachine:
    return OrderStateMachine(session)
