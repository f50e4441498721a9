"""
Order lifecycle rules.

Every function here is a pure function of an order-like object (anything
exposing ``status``, ``payment_status`` and ``archived``; both the ORM row
and ``OrderOut`` qualify) and an ``OrderPolicy``. The server and the register
engine evaluate the same guards, so a transition rejected locally is also
rejected by the server with the same code.
"""
from typing import Iterable, List, Optional

from ..core.enums import (
    OrderStatus,
    OrderType,
    PaymentStatus,
    TERMINAL_STATUSES,
)
from ..core.errors import GuardError
from .policy import OrderPolicy

OTHER_REASON = "Other"
CANCEL_REASONS = (
    "Customer cancelled",
    "Out of stock / damaged",
    "Cashier input error",
    OTHER_REASON,
)


def _status(order) -> OrderStatus:
    return OrderStatus(order.status)


def _is_paid(order) -> bool:
    return PaymentStatus(order.payment_status) == PaymentStatus.paid


def is_terminal(order) -> bool:
    return _status(order) in TERMINAL_STATUSES


def is_active(order) -> bool:
    return not is_terminal(order) and not bool(getattr(order, "archived", False))


def round_money(value: float) -> float:
    return round(float(value or 0), 2)


# ---------- totals ----------
def line_subtotal(qty, unit_price) -> float:
    return round_money(float(qty) * float(unit_price))


def compute_total(items: Iterable) -> float:
    """Sum of line subtotals; items may be dicts or objects with ``subtotal``."""
    total = 0.0
    for it in items:
        sub = it["subtotal"] if isinstance(it, dict) else it.subtotal
        total += float(sub or 0)
    return round_money(total)


def check_draft(order_type, table_id: Optional[int], items: List) -> None:
    if not items:
        raise GuardError("ORDER_EMPTY", "An order needs at least one item")
    if OrderType(order_type) == OrderType.dine_in and table_id is None:
        raise GuardError("TABLE_REQUIRED", "Dine-in orders must reference a table")
    if OrderType(order_type) == OrderType.take_away and table_id is not None:
        raise GuardError("TABLE_NOT_ALLOWED", "Take-away orders cannot reference a table")


# ---------- transitions ----------
def resolve_reason(reason: Optional[str], custom: Optional[str] = None) -> Optional[str]:
    """The "Other" option stands for the free-text reason typed by the operator."""
    if reason == OTHER_REASON:
        reason = custom
    reason = (reason or "").strip()
    return reason or None


def check_transition(order, target, policy: OrderPolicy, reason: Optional[str] = None) -> None:
    current = _status(order)
    target = OrderStatus(target)

    if current in TERMINAL_STATUSES:
        raise GuardError("ORDER_TERMINAL", f"Order is already {current.value}")
    if getattr(order, "archived", False):
        raise GuardError("ORDER_ARCHIVED", "Order was merged into another bill")

    if target == OrderStatus.cancel:
        if not (reason or "").strip():
            raise GuardError("REASON_REQUIRED", "A cancellation reason is required")
        return

    paid = _is_paid(order)
    if current == OrderStatus.new and target == OrderStatus.pending_payment:
        if not policy.prepayment_required:
            raise GuardError("INVALID_TRANSITION", "Prepayment is not required")
        if paid:
            raise GuardError("INVALID_TRANSITION", "Order is already paid")
        return
    if current == OrderStatus.new and target == OrderStatus.process:
        if policy.prepayment_required and not paid:
            raise GuardError("PAYMENT_REQUIRED", "Payment must be confirmed before processing")
        return
    if current == OrderStatus.pending_payment and target == OrderStatus.process:
        if not paid:
            raise GuardError("PAYMENT_REQUIRED", "Payment must be confirmed before processing")
        return
    if current == OrderStatus.process and target == OrderStatus.done:
        if not paid:
            raise GuardError("PAYMENT_REQUIRED", "Confirm payment before completing the order")
        return

    raise GuardError("INVALID_TRANSITION", f"{current.value} -> {target.value} is not allowed")


def next_status(order, policy: OrderPolicy) -> Optional[OrderStatus]:
    """Target of the single "advance" button, or None for terminal orders."""
    current = _status(order)
    if current == OrderStatus.new:
        if policy.prepayment_required and not _is_paid(order):
            return OrderStatus.pending_payment
        return OrderStatus.process
    if current == OrderStatus.pending_payment:
        return OrderStatus.process
    if current == OrderStatus.process:
        return OrderStatus.done
    return None


def allowed_transitions(order, policy: OrderPolicy) -> List[OrderStatus]:
    if not is_active(order):
        return []
    out = []
    for target in (OrderStatus.pending_payment, OrderStatus.process, OrderStatus.done):
        try:
            check_transition(order, target, policy)
        except GuardError:
            continue
        out.append(target)
    out.append(OrderStatus.cancel)
    return out


def check_payable(order) -> None:
    if is_terminal(order):
        raise GuardError("ORDER_TERMINAL", f"Order is already {_status(order).value}")
    if getattr(order, "archived", False):
        raise GuardError("ORDER_ARCHIVED", "Order was merged into another bill")
    if PaymentStatus(order.payment_status) != PaymentStatus.unpaid:
        raise GuardError("ORDER_ALREADY_PAID", "Order is already paid")


def status_after_payment(order, policy: OrderPolicy) -> OrderStatus:
    current = _status(order)
    if policy.prepayment_required and current in (OrderStatus.new, OrderStatus.pending_payment):
        return OrderStatus.process
    return current


def payment_status_after_cancel(order) -> PaymentStatus:
    # paid + cancelled is flagged for manual refund; no ledger entry is written
    if _is_paid(order):
        return PaymentStatus.refunded
    return PaymentStatus(order.payment_status)
