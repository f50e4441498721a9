import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.schemas import ExpenseIn, ShiftClose, ShiftStart
from ..db import get_db
from ..domain.orders import round_money
from ..models.shift import Shift
from ..services import ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shift", tags=["shift"])


@router.get("/current-balance")
def current_balance(db: Session = Depends(get_db)):
    # no open shift is a normal answer, not a 404
    return ledger.serialize_balance(ledger.current_shift(db))


# ---------- OPEN ----------
@router.post("/start", status_code=201)
def start_shift(payload: ShiftStart, db: Session = Depends(get_db)):
    if ledger.current_shift(db) is not None:
        raise HTTPException(status_code=409, detail="SHIFT_ALREADY_OPEN")

    opening = round_money(payload.opening_float)
    s = Shift(
        status="open",
        cashier_id=payload.cashier_id,
        cashier_name=payload.cashier_name,
        opening_float=opening,
        cash_total=opening,
        non_cash_total=0,
        expenses_total=0,
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    logger.info("shift %s opened by %s float=%s", s.id, s.cashier_name, opening)
    return ledger.serialize_balance(s)


# ---------- EXPENSES ----------
@router.post("/expenses", status_code=201)
def add_expense(payload: ExpenseIn, db: Session = Depends(get_db)):
    s = ledger.current_shift(db)
    if s is None:
        raise HTTPException(status_code=409, detail="SHIFT_CLOSED")
    exp = ledger.record_expense(db, s, payload.amount, payload.description, payload.approved_by)
    db.commit()
    db.refresh(s)
    return {"expense_id": exp.id, "balance": ledger.serialize_balance(s)}


# ---------- CLOSE ----------
@router.post("/close")
def close_shift(payload: ShiftClose, db: Session = Depends(get_db)):
    s = ledger.current_shift(db)
    if s is None:
        raise HTTPException(status_code=404, detail="SHIFT_NOT_FOUND")
    ledger.close_shift(db, s, payload.ending_cash_count, payload.by_user)
    db.commit()
    db.refresh(s)
    return ledger.serialize_summary(s)


@router.get("/{shift_id}")
def get_shift(shift_id: int, db: Session = Depends(get_db)):
    s = db.get(Shift, shift_id)
    if not s:
        raise HTTPException(status_code=404, detail="SHIFT_NOT_FOUND")
    return ledger.serialize_summary(s)
