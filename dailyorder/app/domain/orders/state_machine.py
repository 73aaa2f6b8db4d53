"""
Order State Machine.

Two independent axes:
- status: PENDING -> COMPLETED | CANCELLED, both terminal
- payment_status: UNPAID <-> PARTIAL <-> PAID, PAID only while COMPLETED

Validation is batch-wide: every offender is collected before raising so a
bulk request either passes as a whole or is rejected as a whole.
"""

import enum
from typing import Dict, Iterable, List, Optional, Sequence

from dailyorder.app.core.exceptions import IllegalTransitionError, ResourceNotFoundError
from dailyorder.app.models.enums import OrderStatus, PaymentStatus
from dailyorder.app.models.order import Order


class PaymentLedgerEffect(str, enum.Enum):
    NONE = "none"
    CREDIT = "credit"      # payment confirmed
    REVERSAL = "reversal"  # payment withdrawn


ALLOWED_STATUS_TRANSITIONS: Dict[OrderStatus, set] = {
    OrderStatus.PENDING: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}


def _order_nos(orders: Iterable[Order]) -> List[str]:
    return [order.order_no for order in orders]


class OrderStateMachine:

    @staticmethod
    def ensure_all_found(requested_ids: Sequence[int], orders: Iterable[Order]) -> None:
        found = {order.id for order in orders}
        missing = [order_id for order_id in dict.fromkeys(requested_ids) if order_id not in found]
        if missing:
            raise ResourceNotFoundError("Orders", missing_ids=missing)

    @staticmethod
    def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
        return target in ALLOWED_STATUS_TRANSITIONS[current]

    @staticmethod
    def validate_status_transition(orders: Sequence[Order], target: OrderStatus) -> None:
        offenders = [o for o in orders if not OrderStateMachine.can_transition(o.status, target)]
        if not offenders:
            return
        verb = "marked as complete" if target == OrderStatus.COMPLETED else "cancelled"
        numbers = _order_nos(offenders)
        raise IllegalTransitionError(
            f"Only pending orders can be {verb}. Non-pending orders: {', '.join(numbers)}",
            order_nos=numbers,
            details={"target_status": target.value},
        )

    @staticmethod
    def validate_payment_transition(orders: Sequence[Order], target: PaymentStatus) -> None:
        """
        PAID needs a completed order and cannot be applied twice. Moving away
        from PAID or between UNPAID and PARTIAL is always allowed.
        """
        if target != PaymentStatus.PAID:
            return

        not_completed = [o for o in orders if o.status != OrderStatus.COMPLETED]
        already_paid = [o for o in orders if o.payment_status == PaymentStatus.PAID]
        if not not_completed and not already_paid:
            return

        parts = []
        if not_completed:
            parts.append(
                "Only completed orders can be marked as paid. "
                f"Non-completed orders: {', '.join(_order_nos(not_completed))}"
            )
        if already_paid:
            parts.append(f"Orders already marked as paid: {', '.join(_order_nos(already_paid))}")

        offenders = list(dict.fromkeys(_order_nos(not_completed) + _order_nos(already_paid)))
        raise IllegalTransitionError(
            ". ".join(parts),
            order_nos=offenders,
            details={
                "target_payment_status": target.value,
                "not_completed": _order_nos(not_completed),
                "already_paid": _order_nos(already_paid),
            },
        )

    @staticmethod
    def payment_ledger_effect(current: PaymentStatus, target: PaymentStatus) -> PaymentLedgerEffect:
        # PARTIAL carries no amount of its own, so only PAID boundaries move money
        if target == PaymentStatus.PAID and current != PaymentStatus.PAID:
            return PaymentLedgerEffect.CREDIT
        if current == PaymentStatus.PAID and target != PaymentStatus.PAID:
            return PaymentLedgerEffect.REVERSAL
        return PaymentLedgerEffect.NONE

    @staticmethod
    def validate_single_cancel(order: Order) -> None:
        if order.status == OrderStatus.CANCELLED:
            raise IllegalTransitionError("Order is already cancelled", order_nos=[order.order_no])
        if order.status != OrderStatus.PENDING:
            raise IllegalTransitionError(
                "Only pending orders can be cancelled", order_nos=[order.order_no]
            )

    @staticmethod
    def validate_editable(order: Order, message: Optional[str] = None) -> None:
        if order.status != OrderStatus.PENDING:
            raise IllegalTransitionError(
                message or "Only pending orders can be updated", order_nos=[order.order_no]
            )
