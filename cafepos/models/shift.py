from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String

from ..core.clock import utcnow
from ..db import Base


class Shift(Base):
    __tablename__ = "shift"
    id = Column(Integer, primary_key=True, index=True)
    status = Column(String(10), nullable=False, default="open", index=True)  # open | closed
    cashier_id = Column(String(60), nullable=False)
    cashier_name = Column(String(120))
    started_at = Column(DateTime, default=utcnow, nullable=False)
    closed_at = Column(DateTime)
    closed_by = Column(String(60))

    opening_float = Column(Numeric(12, 2), nullable=False, default=0)
    cash_total = Column(Numeric(12, 2), nullable=False, default=0)
    non_cash_total = Column(Numeric(12, 2), nullable=False, default=0)
    expenses_total = Column(Numeric(12, 2), nullable=False, default=0)

    ending_cash_count = Column(Numeric(12, 2))
    expected_cash = Column(Numeric(12, 2))
    difference = Column(Numeric(12, 2))


class ShiftExpense(Base):
    __tablename__ = "shift_expense"
    id = Column(Integer, primary_key=True)
    shift_id = Column(Integer, ForeignKey("shift.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(255), nullable=False)
    approved_by = Column(String(60))
    at = Column(DateTime, default=utcnow)
