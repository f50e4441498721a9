"""
Shift balance arithmetic.

Invariant kept by the server and mirrored optimistically by the register:

    cash_total     = opening_float + sum(paid cash totals) - sum(cash expenses)
    non_cash_total = sum(paid non-cash totals)
"""
from typing import Iterable, Optional

from ..core.enums import PaymentMethod
from .orders import round_money


def is_cash(method) -> bool:
    return PaymentMethod(method) == PaymentMethod.cash


def balance_after_payment(balance, method, amount: float):
    """New ``ShiftBalance`` after one paid order (pure)."""
    if is_cash(method):
        return balance.model_copy(update={"cash_total": round_money(balance.cash_total + amount)})
    return balance.model_copy(update={"non_cash_total": round_money(balance.non_cash_total + amount)})


def balance_after_expense(balance, amount: float):
    return balance.model_copy(
        update={
            "cash_total": round_money(balance.cash_total - amount),
            "expenses_total": round_money(balance.expenses_total + amount),
        }
    )


def expected_cash(opening_float: float, paid: Iterable, expenses: Iterable[float] = ()) -> float:
    """Recompute the drawer from scratch; ``paid`` yields (method, amount) pairs."""
    cash = float(opening_float or 0)
    for method, amount in paid:
        if is_cash(method):
            cash += float(amount or 0)
    cash -= sum(float(e or 0) for e in expenses)
    return round_money(cash)


def non_cash_total(paid: Iterable) -> float:
    return round_money(sum(float(a or 0) for m, a in paid if not is_cash(m)))


def change_due(total: float, received: Optional[float]) -> Optional[float]:
    # display only; a short amount never blocks the confirmation
    if received is None:
        return None
    return round_money(float(received) - float(total))


def format_currency(amount: Optional[float], currency: str = "IDR") -> str:
    value = round_money(amount or 0)
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 1)
    digits = f"{int(whole):,}".replace(",", ".")
    if currency == "IDR":
        out = f"Rp {digits}"
        if round(frac, 2):
            out += f",{int(round(frac * 100)):02d}"
        return sign + out
    return f"{sign}{currency} {abs(value):,.2f}"
