"""
Bill merge planning.

``plan_merge`` validates a merge set and describes the outcome without
touching anything; the server applies the plan in one transaction and the
register applies it as an optimistic layer.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from ..core.enums import OrderType, PaymentStatus
from ..core.errors import GuardError
from .orders import is_terminal, round_money


@dataclass
class MergePlan:
    survivor_id: int
    archived_ids: List[int]
    items: List = field(default_factory=list)
    total: float = 0.0
    warnings: List[str] = field(default_factory=list)


def creation_key(order):
    return (order.created_at, order.id)


def validate_merge_set(ids: Iterable[int], orders_by_id: Dict[int, object]) -> List:
    unique = list(dict.fromkeys(ids))
    if len(unique) < 2:
        raise GuardError("MERGE_TOO_FEW", "Select at least two orders to merge")

    selected = []
    for oid in unique:
        order = orders_by_id.get(oid)
        if order is None:
            raise GuardError("ORDER_NOT_FOUND", f"Order {oid} not found")
        if getattr(order, "archived", False):
            raise GuardError("ORDER_ARCHIVED", f"Order {order.order_no} was already merged")
        if is_terminal(order):
            raise GuardError("ORDER_TERMINAL", f"Order {order.order_no} is already closed")
        if PaymentStatus(order.payment_status) != PaymentStatus.unpaid:
            # a paid bill already counted in the drawer cannot be folded into another
            raise GuardError("MERGE_PAID_ORDER", f"Order {order.order_no} is already paid")
        selected.append(order)
    return sorted(selected, key=creation_key)


def plan_merge(ids: Iterable[int], orders_by_id: Dict[int, object]) -> MergePlan:
    ordered = validate_merge_set(ids, orders_by_id)
    survivor = ordered[0]

    items = []
    for o in ordered:
        items.extend(o.items)

    warnings = []
    if len({o.table_id for o in ordered}) > 1:
        warnings.append(f"Orders use different tables; the bill stays on table {survivor.table_id}")
    if len({OrderType(o.order_type) for o in ordered}) > 1:
        warnings.append("Orders mix dine-in and take-away; the surviving order keeps its type")

    return MergePlan(
        survivor_id=survivor.id,
        archived_ids=[o.id for o in ordered[1:]],
        items=items,
        total=round_money(sum(float(o.total or 0) for o in ordered)),
        warnings=warnings,
    )
