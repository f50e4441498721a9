import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..domain.ledger import expected_cash, is_cash, non_cash_total
from ..domain.orders import round_money
from ..models.order import Order
from ..models.shift import Shift, ShiftExpense

logger = logging.getLogger(__name__)


def current_shift(db: Session) -> Optional[Shift]:
    return db.query(Shift).filter(Shift.status == "open").order_by(Shift.id.desc()).first()


def serialize_balance(shift: Optional[Shift]) -> dict:
    if shift is None:
        return {
            "open": False,
            "shift_id": None,
            "cashier_id": None,
            "cashier_name": None,
            "opening_float": 0.0,
            "cash_total": 0.0,
            "non_cash_total": 0.0,
            "expenses_total": 0.0,
            "started_at": None,
        }
    return {
        "open": shift.status == "open",
        "shift_id": shift.id,
        "cashier_id": shift.cashier_id,
        "cashier_name": shift.cashier_name,
        "opening_float": float(shift.opening_float or 0),
        "cash_total": float(shift.cash_total or 0),
        "non_cash_total": float(shift.non_cash_total or 0),
        "expenses_total": float(shift.expenses_total or 0),
        "started_at": shift.started_at,
    }


def serialize_summary(shift: Shift) -> dict:
    out = serialize_balance(shift)
    out.update(
        {
            "ending_cash_count": None if shift.ending_cash_count is None else float(shift.ending_cash_count),
            "expected_cash": None if shift.expected_cash is None else float(shift.expected_cash),
            "difference": None if shift.difference is None else float(shift.difference),
            "closed_at": shift.closed_at,
        }
    )
    return out


def attribute_payment(db: Session, shift: Shift, method: str, amount: float) -> None:
    """
    Adds one paid order to the running totals with an in-database increment.
    The caller flips the order to ``paid`` with a conditional update in the
    same transaction, so a given order reaches this point at most once.
    The commit is left to the caller.
    """
    column = Shift.cash_total if is_cash(method) else Shift.non_cash_total
    db.query(Shift).filter(Shift.id == shift.id).update(
        {column: column + round_money(amount)}, synchronize_session=False
    )
    logger.info("shift %s: +%s %s", shift.id, round_money(amount), method)


def record_expense(db: Session, shift: Shift, amount: float, description: str, approved_by: Optional[str]) -> ShiftExpense:
    amount = round_money(amount)
    exp = ShiftExpense(shift_id=shift.id, amount=amount, description=description, approved_by=approved_by)
    db.add(exp)
    db.query(Shift).filter(Shift.id == shift.id).update(
        {
            Shift.cash_total: Shift.cash_total - amount,
            Shift.expenses_total: Shift.expenses_total + amount,
        },
        synchronize_session=False,
    )
    logger.info("shift %s: expense %s (%s)", shift.id, amount, description)
    return exp


def close_shift(db: Session, shift: Shift, ending_cash_count: float, by_user: Optional[str]) -> Shift:
    db.refresh(shift)
    expected = round_money(shift.cash_total)
    counted = round_money(ending_cash_count)
    shift.status = "closed"
    shift.closed_at = utcnow()
    shift.closed_by = by_user
    shift.ending_cash_count = counted
    shift.expected_cash = expected
    shift.difference = round_money(counted - expected)
    logger.info("shift %s closed: expected=%s counted=%s diff=%s", shift.id, expected, counted, shift.difference)
    return shift


def recompute_totals(db: Session, shift: Shift) -> dict:
    """
    Rebuild the running totals of ``shift`` from its paid orders and expenses.
    Refunded orders stay in the totals: a cancellation after payment writes
    no reversing entry. The commit is left to the caller.
    """

    rows = (
        db.query(Order.payment_method, Order.total)
        .filter(Order.shift_id == shift.id, Order.payment_status.in_(["paid", "refunded"]))
        .all()
    )
    paid = [(m, float(t or 0)) for m, t in rows]
    expenses = [float(a or 0) for (a,) in db.query(ShiftExpense.amount).filter(ShiftExpense.shift_id == shift.id).all()]

    before = (float(shift.cash_total or 0), float(shift.non_cash_total or 0), float(shift.expenses_total or 0))
    shift.cash_total = expected_cash(shift.opening_float, paid, expenses)
    shift.non_cash_total = non_cash_total(paid)
    shift.expenses_total = round_money(sum(expenses))
    after = (float(shift.cash_total), float(shift.non_cash_total), float(shift.expenses_total))
    if before != after:
        logger.warning("shift %s totals drifted: %s -> %s", shift.id, before, after)
    return {"shift_id": shift.id, "orders": len(paid), "before": before, "after": after}
