"""View models derived from the cached resources; pure functions, no I/O."""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from ..core.enums import OrderStatus, OrderType, PaymentMethod, PaymentStatus
from ..core.errors import GuardError
from ..domain.ledger import format_currency, is_cash
from ..domain.merge import plan_merge
from ..domain.orders import allowed_transitions, is_active, next_status
from ..domain.policy import OperatorContext, OrderPolicy

STATUS_LABELS = {
    OrderStatus.new: "New",
    OrderStatus.pending_payment: "Awaiting payment",
    OrderStatus.process: "In process",
    OrderStatus.done: "Done",
    OrderStatus.cancel: "Cancelled",
}

ALL = "all"
ACTIVE = "active"
FILTERS = (ALL, ACTIVE) + tuple(s.value for s in OrderStatus)


@dataclass(frozen=True)
class OrderRow:
    id: int
    order_no: str
    customer: str
    table_id: Optional[int]
    order_type: OrderType
    item_count: int
    total: float
    total_text: str
    status: OrderStatus
    status_label: str
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    busy: bool = False
    next_action: Optional[OrderStatus] = None
    actions: Sequence[OrderStatus] = ()
    can_pay: bool = False


def _matches(order, status_filter: str, search: str) -> bool:
    if status_filter == ACTIVE and not is_active(order):
        return False
    if status_filter not in (ALL, ACTIVE) and OrderStatus(order.status).value != status_filter:
        return False
    if search:
        needle = search.strip().lower()
        hay = " ".join(filter(None, [order.order_no, order.customer_name, order.customer_phone])).lower()
        if needle not in hay:
            return False
    return True


def order_rows(
    orders: Iterable,
    policy: OrderPolicy,
    busy_ids: Iterable[int] = (),
    status_filter: str = ALL,
    search: str = "",
    currency: str = "IDR",
) -> List[OrderRow]:
    if status_filter not in FILTERS:
        raise GuardError("INVALID_FILTER", f"Unknown filter {status_filter!r}")
    busy = set(busy_ids)
    rows = []
    for o in sorted(orders or (), key=lambda o: (o.created_at, o.id), reverse=True):
        if o.archived or not _matches(o, status_filter, search):
            continue
        is_busy = o.id in busy or o.id < 0
        unpaid = PaymentStatus(o.payment_status) == PaymentStatus.unpaid
        rows.append(
            OrderRow(
                id=o.id,
                order_no=o.order_no,
                customer=o.customer_name or "Walk-in",
                table_id=o.table_id,
                order_type=OrderType(o.order_type),
                item_count=sum(int(i.qty) for i in o.items),
                total=o.total,
                total_text=format_currency(o.total, currency),
                status=OrderStatus(o.status),
                status_label=STATUS_LABELS[OrderStatus(o.status)],
                payment_status=PaymentStatus(o.payment_status),
                payment_method=PaymentMethod(o.payment_method),
                busy=is_busy,
                # controls are withheld while a mutation on the order is unresolved
                next_action=None if is_busy else next_status(o, policy),
                actions=() if is_busy else tuple(allowed_transitions(o, policy)),
                can_pay=not is_busy and unpaid and is_active(o),
            )
        )
    return rows


@dataclass(frozen=True)
class BalanceView:
    open: bool
    cashier_label: str
    opening_float: float = 0.0
    cash_total: float = 0.0
    non_cash_total: float = 0.0
    expenses_total: float = 0.0
    opening_text: str = ""
    cash_text: str = ""
    non_cash_text: str = ""
    expenses_text: str = ""
    total_text: str = ""


def balance_view(balance, ctx: OperatorContext, currency: str = "IDR") -> BalanceView:
    fmt = lambda v: format_currency(v, currency)  # noqa: E731
    if balance is None or not balance.open:
        label = "- (closed)" if ctx.is_privileged else "No open shift"
        return BalanceView(
            open=False,
            cashier_label=label,
            opening_text=fmt(0),
            cash_text=fmt(0),
            non_cash_text=fmt(0),
            expenses_text=fmt(0),
            total_text=fmt(0),
        )
    return BalanceView(
        open=True,
        cashier_label=balance.cashier_name or balance.cashier_id or "-",
        opening_float=balance.opening_float,
        cash_total=balance.cash_total,
        non_cash_total=balance.non_cash_total,
        expenses_total=balance.expenses_total,
        opening_text=fmt(balance.opening_float),
        cash_text=fmt(balance.cash_total),
        non_cash_text=fmt(balance.non_cash_total),
        expenses_text=fmt(balance.expenses_total),
        total_text=fmt(balance.cash_total + balance.non_cash_total),
    )


@dataclass(frozen=True)
class ShiftStats:
    transactions: int = 0
    cash_transactions: int = 0
    non_cash_transactions: int = 0
    revenue: float = 0.0
    by_method: Dict[str, int] = field(default_factory=dict)


def shift_stats(orders: Iterable, balance) -> ShiftStats:
    """Paid, non-cancelled orders attributed to the open shift."""
    if balance is None or not balance.open:
        return ShiftStats()
    counted = [
        o
        for o in orders or ()
        if PaymentStatus(o.payment_status) == PaymentStatus.paid
        and OrderStatus(o.status) != OrderStatus.cancel
        and o.shift_id == balance.shift_id
    ]
    by_method: Dict[str, int] = {}
    for o in counted:
        key = PaymentMethod(o.payment_method).value
        by_method[key] = by_method.get(key, 0) + 1
    cash = sum(1 for o in counted if is_cash(o.payment_method))
    return ShiftStats(
        transactions=len(counted),
        cash_transactions=cash,
        non_cash_transactions=len(counted) - cash,
        revenue=round(sum(float(o.total or 0) for o in counted), 2),
        by_method=by_method,
    )


@dataclass(frozen=True)
class MergePreview:
    survivor_id: int
    survivor_no: str
    order_nos: List[str]
    archived_ids: List[int]
    item_count: int
    total: float
    total_text: str
    warnings: List[str]


def merge_preview(ids: Iterable[int], orders: Iterable, currency: str = "IDR") -> MergePreview:
    by_id = {o.id: o for o in orders or ()}
    plan = plan_merge(ids, by_id)
    survivor = by_id[plan.survivor_id]
    return MergePreview(
        survivor_id=plan.survivor_id,
        survivor_no=survivor.order_no,
        order_nos=[by_id[i].order_no for i in [plan.survivor_id] + plan.archived_ids],
        archived_ids=plan.archived_ids,
        item_count=sum(int(i.qty) for i in plan.items),
        total=plan.total,
        total_text=format_currency(plan.total, currency),
        warnings=plan.warnings,
    )
