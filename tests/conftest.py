"""Pytest configuration and fixtures."""

import asyncio
import itertools
import os
from datetime import datetime, timedelta
from typing import Generator

# configure before any cafepos import reads settings
os.environ["DB_URL"] = "sqlite:///:memory:"
os.environ["PREPAYMENT_REQUIRED"] = "false"
os.environ["POS_POLL_INTERVAL"] = "0"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cafepos.core.enums import OrderStatus, OrderType, PaymentMethod, PaymentStatus, Role, TableStatus
from cafepos.core.errors import ConflictError, GuardError
from cafepos.core.schemas import (
    MergeResult,
    OrderCreate,
    OrderItemIn,
    OrderItemOut,
    OrderOut,
    PaymentResult,
    ShiftBalance,
    ShiftSummary,
    TableMoveResult,
    TableOut,
)
from cafepos.db import Base, get_db
from cafepos.domain import ledger
from cafepos.domain.merge import plan_merge
from cafepos.domain.orders import (
    check_payable,
    check_transition,
    compute_total,
    line_subtotal,
    payment_status_after_cancel,
    status_after_payment,
)
from cafepos.domain.policy import OperatorContext, OrderPolicy
from cafepos.domain.tables import check_move, orders_on_table
from cafepos.engine.pos import PosEngine
from cafepos.main import app
from cafepos.middleware import idempotency
from cafepos.models import customer, order, shift, table  # noqa: F401
from cafepos.models.table import CafeTable

TEST_DATABASE_URL = "sqlite:///:memory:"


# ---------- server ----------
@pytest.fixture(scope="function")
def db_engine():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    asyncio.run(idempotency.replies.clear())
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def cafe_tables(db_session: Session):
    rows = [CafeTable(number=str(n), capacity=4, status="available") for n in range(1, 5)]
    db_session.add_all(rows)
    db_session.commit()
    return [t.id for t in rows]


@pytest.fixture
def open_shift(client):
    def _open(opening_float=100000, cashier_id="c1", cashier_name="Sari"):
        r = client.post(
            "/shift/start",
            json={"opening_float": opening_float, "cashier_id": cashier_id, "cashier_name": cashier_name},
        )
        assert r.status_code == 201, r.text
        return r.json()

    return _open


@pytest.fixture
def new_order(client):
    def _create(*prices, table_id=None, method="cash", **extra):
        body = {
            "order_type": "dine-in" if table_id is not None else "take-away",
            "table_id": table_id,
            "payment_method": method,
            "items": [{"menu_id": i + 1, "name": f"Item {i + 1}", "qty": 1, "unit_price": p} for i, p in enumerate(prices)],
        }
        body.update(extra)
        r = client.post("/orders", json=body)
        assert r.status_code == 201, r.text
        return r.json()

    return _create


# ---------- register engine against an in-memory backend ----------
class FakeBackend:
    """
    Server stand-in for engine tests. It applies the same domain rules as the
    HTTP API and can hold or fail individual operations on demand.
    """

    def __init__(self, tables=4):
        self.orders = {}
        self.balance = ShiftBalance()
        self.tables = {i: TableOut(id=i, number=str(i)) for i in range(1, tables + 1)}
        self.ledger = []
        self.calls = []
        self.payment_keys = []
        self._replays = {}
        self._ids = itertools.count(1)
        self._shift_ids = itertools.count(1)
        self._clock = itertools.count(0)
        self._gates = {}
        self._failures = {}

    def gate(self, op: str) -> asyncio.Event:
        ev = asyncio.Event()
        self._gates[op] = ev
        return ev

    def fail_next(self, op: str, exc: Exception) -> None:
        self._failures[op] = exc

    async def enter(self, op: str) -> None:
        self.calls.append(op)
        gate = self._gates.pop(op, None)
        if gate is not None:
            await gate.wait()
        exc = self._failures.pop(op, None)
        if exc is not None:
            raise exc

    def now(self) -> datetime:
        return datetime(2026, 3, 2, 9, 0) + timedelta(minutes=next(self._clock))

    def reject(self, exc: GuardError) -> ConflictError:
        return ConflictError(exc.code, exc.message)


class FakeOrders:
    def __init__(self, backend: FakeBackend):
        self.b = backend

    async def create(self, draft):
        await self.b.enter("create")
        oid = next(self.b._ids)
        created = self.b.now()
        items = [
            OrderItemOut(
                line_id=oid * 100 + n,
                menu_id=i.menu_id,
                name=i.name,
                qty=i.qty,
                unit_price=i.unit_price,
                subtotal=line_subtotal(i.qty, i.unit_price),
                note=i.note,
            )
            for n, i in enumerate(draft.items)
        ]
        o = OrderOut(
            id=oid,
            order_no=f"ORD-{oid:06d}",
            created_at=created,
            business_date=created.date(),
            customer_name=draft.customer_name,
            customer_phone=draft.customer_phone,
            order_type=draft.order_type,
            table_id=draft.table_id,
            items=items,
            total=compute_total(items),
            payment_method=draft.payment_method,
            notes=draft.notes,
        )
        self.b.orders[oid] = o
        return o

    async def list(self, status=None, business_date=None, include_archived=False):
        snapshot = [
            o
            for o in sorted(self.b.orders.values(), key=lambda o: (o.created_at, o.id), reverse=True)
            if include_archived or not o.archived
        ]
        await self.b.enter("list_orders")
        return snapshot

    async def get(self, order_id):
        await self.b.enter("get")
        return self.b.orders[order_id]

    async def update_status(self, order_id, status, reason=None, by_user=None, prepayment_required=None):
        await self.b.enter("status")
        o = self.b.orders[order_id]
        try:
            check_transition(o, status, OrderPolicy(bool(prepayment_required)), reason)
        except GuardError as exc:
            raise self.b.reject(exc)
        changes = {"status": OrderStatus(status)}
        if status == OrderStatus.cancel:
            changes.update(
                cancellation_reason=reason,
                cancelled_by=by_user,
                payment_status=payment_status_after_cancel(o),
            )
        self.b.orders[order_id] = o.model_copy(update=changes)
        return self.b.orders[order_id]

    async def confirm_payment(self, order_id, method=None, by_user=None, prepayment_required=None, idempotency_key=None):
        self.b.payment_keys.append(idempotency_key)
        await self.b.enter("pay")
        if idempotency_key in self.b._replays:
            return self.b._replays[idempotency_key].model_copy(update={"replay": True})
        if not self.b.balance.open:
            raise ConflictError("SHIFT_CLOSED")
        o = self.b.orders[order_id]
        try:
            check_payable(o)
        except GuardError as exc:
            raise self.b.reject(exc)
        method = PaymentMethod(method or o.payment_method)
        paid = o.model_copy(
            update={
                "payment_status": PaymentStatus.paid,
                "payment_method": method,
                "status": status_after_payment(o, OrderPolicy(bool(prepayment_required))),
                "shift_id": self.b.balance.shift_id,
                "paid_at": self.b.now(),
            }
        )
        self.b.orders[order_id] = paid
        self.b.balance = ledger.balance_after_payment(self.b.balance, method, o.total)
        self.b.ledger.append((order_id, method, o.total))
        result = PaymentResult(
            order=paid,
            shift_id=self.b.balance.shift_id,
            method=method,
            amount=o.total,
            points_earned=int(o.total // 10000) if o.customer_phone else 0,
        )
        if idempotency_key:
            self.b._replays[idempotency_key] = result
        return result

    async def merge(self, ids, by_user=None):
        await self.b.enter("merge")
        try:
            plan = plan_merge(ids, self.b.orders)
        except GuardError as exc:
            raise self.b.reject(exc)
        for oid in plan.archived_ids:
            self.b.orders[oid] = self.b.orders[oid].model_copy(
                update={"archived": True, "merged_into_id": plan.survivor_id}
            )
        survivor = self.b.orders[plan.survivor_id].model_copy(update={"items": plan.items, "total": plan.total})
        self.b.orders[plan.survivor_id] = survivor
        return MergeResult(survivor=survivor, archived_ids=plan.archived_ids)

    async def active_by_phone(self, phone):
        await self.b.enter("active_by_phone")
        rows = [o for o in self.b.orders.values() if o.customer_phone == phone and o.status in ("new", "process")]
        return {"has_active_order": bool(rows), "orders": [{"id": o.id, "order_no": o.order_no} for o in rows]}


class FakeShifts:
    def __init__(self, backend: FakeBackend):
        self.b = backend

    async def current_balance(self):
        snapshot = self.b.balance
        await self.b.enter("balance")
        return snapshot

    async def start(self, opening_float, cashier_id, cashier_name):
        await self.b.enter("start_shift")
        if self.b.balance.open:
            raise ConflictError("SHIFT_ALREADY_OPEN")
        self.b.balance = ShiftBalance(
            open=True,
            shift_id=next(self.b._shift_ids),
            cashier_id=cashier_id,
            cashier_name=cashier_name,
            opening_float=opening_float,
            cash_total=opening_float,
            started_at=self.b.now(),
        )
        return self.b.balance

    async def close(self, ending_cash_count, by_user=None):
        await self.b.enter("close_shift")
        if not self.b.balance.open:
            raise ConflictError("SHIFT_NOT_FOUND", status_code=404)
        expected = self.b.balance.cash_total
        summary = ShiftSummary(
            **self.b.balance.model_dump(),
            ending_cash_count=ending_cash_count,
            expected_cash=expected,
            difference=round(ending_cash_count - expected, 2),
            closed_at=self.b.now(),
        )
        self.b.balance = ShiftBalance()
        return summary

    async def record_expense(self, amount, description, approved_by=None):
        await self.b.enter("expense")
        if not self.b.balance.open:
            raise ConflictError("SHIFT_CLOSED")
        self.b.balance = ledger.balance_after_expense(self.b.balance, amount)
        return self.b.balance


class FakeTables:
    def __init__(self, backend: FakeBackend):
        self.b = backend

    async def list(self):
        snapshot = list(self.b.tables.values())
        await self.b.enter("list_tables")
        return snapshot

    async def update_status(self, table_id, status):
        await self.b.enter("table")
        self.b.tables[table_id] = self.b.tables[table_id].model_copy(update={"status": TableStatus(status)})
        return self.b.tables[table_id]

    async def clean(self, table_id):
        await self.b.enter("table")
        self.b.tables[table_id] = self.b.tables[table_id].model_copy(update={"status": TableStatus.available})
        return self.b.tables[table_id]

    async def move(self, from_id, to_id):
        await self.b.enter("move")
        source, target = self.b.tables[from_id], self.b.tables[to_id]
        try:
            check_move(source, target)
        except GuardError as exc:
            raise self.b.reject(exc)
        moved = [o.id for o in orders_on_table(from_id, self.b.orders.values())]
        for oid in moved:
            self.b.orders[oid] = self.b.orders[oid].model_copy(update={"table_id": to_id})
        self.b.tables[from_id] = source.model_copy(update={"status": TableStatus.available})
        self.b.tables[to_id] = target.model_copy(update={"status": TableStatus.occupied})
        return TableMoveResult(from_table=self.b.tables[from_id], to_table=self.b.tables[to_id], moved_order_ids=moved)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_engine(backend):
    def factory(role=Role.cashier, prepayment_required=False, **kwargs) -> PosEngine:
        ctx = OperatorContext(user_id="u1", name="Sari", role=role)
        return PosEngine(
            FakeOrders(backend),
            FakeShifts(backend),
            FakeTables(backend),
            ctx,
            policy=OrderPolicy(prepayment_required=prepayment_required),
            currency="IDR",
            **kwargs,
        )

    return factory


@pytest.fixture
def draft():
    def _draft(*prices, table_id=None, method=PaymentMethod.cash, phone=None, name=None):
        return OrderCreate(
            customer_name=name,
            customer_phone=phone,
            order_type=OrderType.dine_in if table_id is not None else OrderType.take_away,
            table_id=table_id,
            payment_method=method,
            items=[OrderItemIn(menu_id=i + 1, name=f"Item {i + 1}", qty=1, unit_price=p) for i, p in enumerate(prices)],
        )

    return _draft
