"""
Register engine.

``PosEngine`` is what the cashier UI drives. Every action checks the
operator policy and the local guards first, applies its effect to the
cached resources optimistically, issues one authoritative request, and
then either revalidates or rolls back. Failures are reported through the
notifier and re-raised so the caller can keep its form open.
"""
import functools
import itertools
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional

from ..core.clock import business_day, utcnow
from ..core.config import settings
from ..core.enums import OrderStatus, OrderType, PaymentMethod, PaymentStatus, TableStatus, TERMINAL_STATUSES
from ..core.errors import ConflictError, GuardError, PosError
from ..core.schemas import (
    MergeResult,
    OrderCreate,
    OrderItemOut,
    OrderOut,
    ShiftBalance,
    ShiftSummary,
    TableMoveResult,
)
from ..domain import ledger
from ..domain.merge import plan_merge
from ..domain.orders import (
    check_draft,
    check_payable,
    check_transition,
    compute_total,
    line_subtotal,
    next_status,
    payment_status_after_cancel,
    resolve_reason,
    round_money,
    status_after_payment,
)
from ..domain.policy import OperatorContext, OrderPolicy, ensure_can_operate, ensure_can_view
from ..domain.tables import check_move, orders_on_table
from . import views
from .cache import CachedResource, run_optimistic
from .inflight import InFlightOrders
from .notify import Notifier
from .poller import Revalidator
from .resources import OrderResource, ShiftResource, TableResource
from .tables import TableStateSynchronizer
from .transport import ApiClient

logger = logging.getLogger(__name__)

OPERATE = "operate"
OBSERVE = "observe"
OPEN_SHIFT = "open_shift"


@dataclass(frozen=True)
class PaymentReceipt:
    order: OrderOut
    method: PaymentMethod
    amount: float
    change_due: Optional[float] = None
    points_earned: int = 0
    shift_id: Optional[int] = None


def _action(label: str):
    def deco(fn):
        @functools.wraps(fn)
        async def wrapper(self, *args, **kwargs):
            try:
                return await fn(self, *args, **kwargs)
            except PosError as exc:
                self.notifier.error(f"{label} failed: {exc.message}", code=exc.code)
                raise

        return wrapper

    return deco


def _replace(order_id: int, changes: dict):
    def apply(orders):
        return tuple(o.model_copy(update=changes) if o.id == order_id else o for o in orders)

    return apply


class PosEngine:
    def __init__(
        self,
        orders: OrderResource,
        shifts: ShiftResource,
        tables: TableResource,
        context: OperatorContext,
        policy: Optional[OrderPolicy] = None,
        notifier: Optional[Notifier] = None,
        currency: Optional[str] = None,
        business_date: Optional[date] = None,
    ):
        self.orders = orders
        self.shifts = shifts
        self.tables = tables
        self.context = context
        self.policy = policy or OrderPolicy.from_settings(settings)
        self.notifier = notifier or Notifier()
        self.currency = currency or settings.currency
        self.business_date = business_date

        self.orders_cache: CachedResource = CachedResource("orders", self._fetch_orders)
        self.balance_cache: CachedResource = CachedResource("shift-balance", shifts.current_balance)
        self.tables_cache: CachedResource = CachedResource("tables", self._fetch_tables)
        self.inflight = InFlightOrders()
        self.synchronizer = TableStateSynchronizer(tables, self.tables_cache, self.notifier)

        self._payment_keys = {}
        self._provisional_ids = itertools.count(-1, -1)

    @classmethod
    def over_http(cls, context: OperatorContext, api: Optional[ApiClient] = None, **kwargs) -> "PosEngine":
        api = api or ApiClient()
        return cls(OrderResource(api), ShiftResource(api), TableResource(api), context, **kwargs)

    # ---------- loading ----------
    async def _fetch_orders(self):
        return tuple(await self.orders.list(business_date=self.business_date or business_day()))

    async def _fetch_tables(self):
        return tuple(await self.tables.list())

    async def refresh(self) -> None:
        for cache in (self.balance_cache, self.orders_cache, self.tables_cache):
            await cache.revalidate()

    def poller(self, interval: Optional[float] = None) -> Revalidator:
        return Revalidator(self.refresh, interval)

    # ---------- reads ----------
    @property
    def balance(self) -> Optional[ShiftBalance]:
        return self.balance_cache.value

    @property
    def all_orders(self) -> tuple:
        return self.orders_cache.value or ()

    def access(self) -> str:
        """Which screen the operator gets: the register, read-only view, or open-shift form."""
        if self.balance is not None and self.balance.open:
            return OPERATE
        return OBSERVE if self.context.is_privileged else OPEN_SHIFT

    def order_rows(self, status_filter: str = views.ALL, search: str = "") -> List[views.OrderRow]:
        ensure_can_view(self.context, self.balance)
        return views.order_rows(
            self.all_orders,
            self.policy,
            busy_ids=self.inflight.busy_ids,
            status_filter=status_filter,
            search=search,
            currency=self.currency,
        )

    def balance_view(self) -> views.BalanceView:
        return views.balance_view(self.balance, self.context, self.currency)

    def shift_stats(self) -> views.ShiftStats:
        ensure_can_view(self.context, self.balance)
        return views.shift_stats(self.all_orders, self.balance)

    def merge_preview(self, ids: Iterable[int]) -> views.MergePreview:
        ensure_can_view(self.context, self.balance)
        return views.merge_preview(ids, self.all_orders, self.currency)

    def _order(self, order_id: int) -> OrderOut:
        if order_id < 0:
            raise GuardError("ORDER_BUSY", "Order is still being created")
        for o in self.all_orders:
            if o.id == order_id:
                return o
        raise GuardError("ORDER_NOT_FOUND", f"Order {order_id} not found")

    def _fmt(self, amount) -> str:
        return ledger.format_currency(amount, self.currency)

    # ---------- shift ----------
    @_action("Open shift")
    async def start_shift(self, opening_float: float) -> ShiftBalance:
        if opening_float is None or opening_float < 0:
            raise GuardError("INVALID_AMOUNT", "Opening float cannot be negative")
        if self.balance is not None and self.balance.open:
            raise GuardError("SHIFT_ALREADY_OPEN", "A shift is already open")
        opened = ShiftBalance(
            open=True,
            cashier_id=self.context.user_id,
            cashier_name=self.context.name,
            opening_float=round_money(opening_float),
            cash_total=round_money(opening_float),
            started_at=utcnow(),
        )
        result = await run_optimistic(
            [(self.balance_cache, lambda _: opened)],
            lambda: self.shifts.start(opening_float, self.context.user_id, self.context.name),
            label="open shift",
        )
        self.notifier.success(f"Shift opened with {self._fmt(opening_float)}")
        return self.balance or result

    @_action("Close shift")
    async def close_shift(self, ending_cash_count: float) -> ShiftSummary:
        ensure_can_operate(self.context, self.balance)
        if ending_cash_count is None or ending_cash_count < 0:
            raise GuardError("INVALID_AMOUNT", "Counted cash cannot be negative")
        summary = await run_optimistic(
            [(self.balance_cache, lambda _: ShiftBalance())],
            lambda: self.shifts.close(ending_cash_count, by_user=self.context.name),
            label="close shift",
        )
        self.notifier.success(
            f"Shift closed; expected {self._fmt(summary.expected_cash)}, difference {self._fmt(summary.difference)}"
        )
        return summary

    @_action("Record expense")
    async def record_expense(self, amount: float, description: str) -> ShiftBalance:
        ensure_can_operate(self.context, self.balance)
        if amount is None or amount <= 0:
            raise GuardError("INVALID_AMOUNT", "Expense amount must be positive")
        if not (description or "").strip():
            raise GuardError("DESCRIPTION_REQUIRED", "Describe the expense")
        result = await run_optimistic(
            [(self.balance_cache, lambda b: ledger.balance_after_expense(b, round_money(amount)))],
            lambda: self.shifts.record_expense(amount, description.strip(), approved_by=self.context.name),
            label="expense",
        )
        self.notifier.success(f"Expense of {self._fmt(amount)} recorded")
        return self.balance or result

    # ---------- orders ----------
    @_action("Create order")
    async def create_order(self, draft: OrderCreate) -> OrderOut:
        ensure_can_operate(self.context, self.balance)
        check_draft(draft.order_type, draft.table_id, draft.items)

        items = [
            OrderItemOut(
                menu_id=i.menu_id,
                name=i.name,
                qty=i.qty,
                unit_price=i.unit_price,
                subtotal=line_subtotal(i.qty, i.unit_price),
                note=i.note,
            )
            for i in draft.items
        ]
        now = utcnow()
        provisional = OrderOut(
            id=next(self._provisional_ids),
            order_no="PENDING",
            created_at=now,
            business_date=business_day(),
            customer_name=draft.customer_name,
            customer_phone=draft.customer_phone,
            order_type=draft.order_type,
            table_id=draft.table_id,
            items=items,
            total=compute_total(items),
            payment_method=draft.payment_method,
            notes=draft.notes,
        )
        created = await run_optimistic(
            [(self.orders_cache, lambda orders: (provisional,) + tuple(orders))],
            lambda: self.orders.create(draft),
            label="create order",
        )
        self.notifier.success(f"Order {created.order_no} created ({self._fmt(created.total)})")
        if OrderType(created.order_type) == OrderType.dine_in:
            await self.synchronizer.order_opened(created)
        return created

    async def _transition(self, order: OrderOut, target: OrderStatus, reason: Optional[str] = None) -> OrderOut:
        check_transition(order, target, self.policy, reason)
        changes = {"status": target}
        if target == OrderStatus.cancel:
            changes.update(
                cancellation_reason=reason,
                cancelled_by=self.context.name,
                payment_status=payment_status_after_cancel(order),
            )
        with self.inflight.hold(order.id):
            updated = await run_optimistic(
                [(self.orders_cache, _replace(order.id, changes))],
                lambda: self.orders.update_status(
                    order.id,
                    target,
                    reason=reason,
                    by_user=self.context.name,
                    prepayment_required=self.policy.prepayment_required,
                ),
                label=f"{order.order_no} -> {target.value}",
            )
        self.notifier.success(f"Order {updated.order_no}: {views.STATUS_LABELS[target]}")
        if PaymentStatus(updated.payment_status) == PaymentStatus.refunded:
            self.notifier.warning(f"Order {updated.order_no} was paid; refund {self._fmt(updated.total)}")
        if target in TERMINAL_STATUSES:
            await self.synchronizer.order_closed(updated, self.all_orders)
        return updated

    @_action("Update order")
    async def transition(self, order_id: int, target: OrderStatus, reason: Optional[str] = None) -> OrderOut:
        ensure_can_operate(self.context, self.balance)
        return await self._transition(self._order(order_id), OrderStatus(target), reason)

    @_action("Update order")
    async def advance(self, order_id: int) -> OrderOut:
        ensure_can_operate(self.context, self.balance)
        order = self._order(order_id)
        target = next_status(order, self.policy)
        if target is None:
            raise GuardError("ORDER_TERMINAL", f"Order {order.order_no} is already closed")
        return await self._transition(order, target)

    @_action("Cancel order")
    async def cancel(self, order_id: int, reason: Optional[str], custom_reason: Optional[str] = None) -> OrderOut:
        ensure_can_operate(self.context, self.balance)
        order = self._order(order_id)
        return await self._transition(order, OrderStatus.cancel, resolve_reason(reason, custom_reason))

    @_action("Payment")
    async def confirm_payment(
        self,
        order_id: int,
        method: Optional[PaymentMethod] = None,
        cash_received: Optional[float] = None,
    ) -> PaymentReceipt:
        ensure_can_operate(self.context, self.balance)
        order = self._order(order_id)
        check_payable(order)

        method = PaymentMethod(method or order.payment_method)
        amount = round_money(order.total)
        change = ledger.change_due(amount, cash_received) if ledger.is_cash(method) else None
        changes = {
            "payment_status": PaymentStatus.paid,
            "payment_method": method,
            "status": status_after_payment(order, self.policy),
            "shift_id": self.balance.shift_id,
            "paid_at": utcnow(),
        }
        with self.inflight.hold(order_id):
            # one key per attempt chain: a retry after a lost response replays instead of paying twice
            if order_id in self._payment_keys:
                logger.info("retrying payment of %s with key %s", order.order_no, self._payment_keys[order_id])
            key = self._payment_keys.setdefault(order_id, f"pay-{order_id}-{uuid.uuid4().hex[:12]}")
            try:
                result = await run_optimistic(
                    [
                        (self.orders_cache, _replace(order_id, changes)),
                        (self.balance_cache, lambda b: ledger.balance_after_payment(b, method, amount)),
                    ],
                    lambda: self.orders.confirm_payment(
                        order_id,
                        method,
                        by_user=self.context.name,
                        prepayment_required=self.policy.prepayment_required,
                        idempotency_key=key,
                    ),
                    label=f"pay {order.order_no}",
                )
            except ConflictError:
                self._payment_keys.pop(order_id, None)
                raise
        self._payment_keys.pop(order_id, None)

        message = f"Order {result.order.order_no} paid {self._fmt(result.amount)} via {result.method.value}"
        if change is not None and change > 0:
            message += f"; change {self._fmt(change)}"
        if result.points_earned:
            message += f"; +{result.points_earned} points"
        self.notifier.success(message)
        return PaymentReceipt(
            order=result.order,
            method=result.method,
            amount=result.amount,
            change_due=change,
            points_earned=result.points_earned,
            shift_id=result.shift_id,
        )

    @_action("Merge")
    async def merge_orders(self, ids: Iterable[int]) -> MergeResult:
        ensure_can_operate(self.context, self.balance)
        by_id = {o.id: o for o in self.all_orders}
        plan = plan_merge(ids, by_id)
        member_ids = [plan.survivor_id] + plan.archived_ids
        archived = set(plan.archived_ids)

        def apply(orders):
            out = []
            for o in orders:
                if o.id in archived:
                    continue
                if o.id == plan.survivor_id:
                    o = o.model_copy(update={"items": list(plan.items), "total": plan.total})
                out.append(o)
            return tuple(out)

        with self.inflight.hold(*member_ids):
            result = await run_optimistic(
                [(self.orders_cache, apply)],
                lambda: self.orders.merge(member_ids, by_user=self.context.name),
                label="merge",
            )
        self.notifier.success(
            f"Merged {len(plan.archived_ids)} bill(s) into {result.survivor.order_no} ({self._fmt(result.survivor.total)})"
        )
        for w in plan.warnings:
            self.notifier.info(w)
        # guests moved to the surviving bill; their old tables may now be empty
        for oid in plan.archived_ids:
            moved = by_id[oid]
            if moved.table_id is not None and moved.table_id != result.survivor.table_id:
                await self.synchronizer.order_closed(moved, self.all_orders)
        return result

    # ---------- tables ----------
    @_action("Move table")
    async def move_table(self, from_id: int, to_id: int) -> TableMoveResult:
        ensure_can_operate(self.context, self.balance)
        by_id = {t.id: t for t in self.tables_cache.value or ()}
        for tid in (from_id, to_id):
            if tid not in by_id:
                raise GuardError("TABLE_NOT_FOUND", f"Table {tid} not found")
        source, target = by_id[from_id], by_id[to_id]
        check_move(source, target)

        moving = [o.id for o in orders_on_table(from_id, self.all_orders)]
        if any(oid < 0 for oid in moving):
            raise GuardError("ORDER_BUSY", "An order on this table is still being created")
        moved = set(moving)

        def repoint(orders):
            return tuple(o.model_copy(update={"table_id": to_id}) if o.id in moved else o for o in orders)

        def swap(tables):
            out = []
            for t in tables:
                if t.id == from_id:
                    t = t.model_copy(update={"status": TableStatus.available, "occupied_since": None})
                elif t.id == to_id:
                    t = t.model_copy(update={"status": TableStatus.occupied, "occupied_since": source.occupied_since})
                out.append(t)
            return tuple(out)

        with self.inflight.hold(*moving):
            result = await run_optimistic(
                [(self.orders_cache, repoint), (self.tables_cache, swap)],
                lambda: self.tables.move(from_id, to_id),
                label=f"table {source.number} -> {target.number}",
            )
        self.notifier.success(
            f"Table {source.number} moved to {target.number} ({len(result.moved_order_ids)} order(s))"
        )
        return result

    @_action("Clean table")
    async def mark_table_clean(self, table_id: int):
        ensure_can_operate(self.context, self.balance)
        return await self.synchronizer.mark_clean(table_id)

    async def find_active_by_phone(self, phone: str) -> dict:
        ensure_can_view(self.context, self.balance)
        return await self.orders.active_by_phone(phone)
