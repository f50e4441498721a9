import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..core.clock import business_day, utcnow
from ..core.config import settings
from ..core.enums import OrderStatus, PaymentStatus
from ..core.errors import GuardError, http_status_for
from ..core.schemas import MergeRequest, OrderCreate, PayRequest, StatusUpdate
from ..db import get_db
from ..domain import merge as merge_rules
from ..domain.orders import (
    check_draft,
    check_payable,
    check_transition,
    line_subtotal,
    payment_status_after_cancel,
    round_money,
    status_after_payment,
)
from ..domain.policy import OrderPolicy
from ..models.order import Order, OrderLine
from ..models.table import CafeTable
from ..services.ledger import attribute_payment, current_shift
from ..services.loyalty import award_points

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

ACTIVE = [OrderStatus.new.value, OrderStatus.pending_payment.value, OrderStatus.process.value]


def _reject(exc: GuardError) -> HTTPException:
    return HTTPException(status_code=http_status_for(exc.code), detail=exc.code)


def _policy(flag: Optional[bool]) -> OrderPolicy:
    if flag is None:
        return OrderPolicy.from_settings(settings)
    return OrderPolicy(prepayment_required=flag)


def _serialize_order(o: Order) -> dict:
    return {
        "id": o.id,
        "order_no": o.order_no,
        "created_at": o.created_at,
        "business_date": o.business_date,
        "customer_name": o.customer_name,
        "customer_phone": o.customer_phone,
        "customer_id": o.customer_id,
        "order_type": o.order_type,
        "table_id": o.table_id,
        "items": [
            {
                "line_id": l.id,
                "menu_id": l.menu_id,
                "name": l.name,
                "qty": l.qty,
                "unit_price": float(l.unit_price),
                "subtotal": float(l.subtotal or 0),
                "note": l.note,
            }
            for l in o.items
        ],
        "total": float(o.total or 0),
        "payment_method": o.payment_method,
        "payment_status": o.payment_status,
        "status": o.status,
        "notes": o.notes,
        "archived": bool(o.archived),
        "merged_into_id": o.merged_into_id,
        "shift_id": o.shift_id,
        "paid_at": o.paid_at,
        "cancellation_reason": o.cancellation_reason,
        "cancelled_by": o.cancelled_by,
    }


def _get_order(db: Session, order_id: int) -> Order:
    o = db.get(Order, order_id)
    if not o:
        raise HTTPException(status_code=404, detail="ORDER_NOT_FOUND")
    return o


# ---------- CREATE ----------
@router.post("", status_code=201)
def create_order(payload: OrderCreate, db: Session = Depends(get_db)):
    try:
        check_draft(payload.order_type, payload.table_id, payload.items)
    except GuardError as exc:
        raise _reject(exc)
    if payload.table_id is not None and not db.get(CafeTable, payload.table_id):
        raise HTTPException(status_code=404, detail="TABLE_NOT_FOUND")

    now = utcnow()
    o = Order(
        created_at=now,
        business_date=business_day(),
        customer_name=(payload.customer_name or "").strip() or None,
        customer_phone=(payload.customer_phone or "").strip() or None,
        order_type=payload.order_type.value,
        table_id=payload.table_id,
        payment_method=payload.payment_method.value,
        payment_status=PaymentStatus.unpaid.value,
        status=OrderStatus.new.value,
        notes=payload.notes,
        archived=False,
    )
    for it in payload.items:
        o.items.append(
            OrderLine(
                menu_id=it.menu_id,
                name=it.name,
                qty=it.qty,
                unit_price=it.unit_price,
                subtotal=line_subtotal(it.qty, it.unit_price),
                note=it.note,
            )
        )
    o.total = round_money(sum(float(l.subtotal) for l in o.items))
    db.add(o)
    db.flush()
    o.order_no = f"ORD-{o.id:06d}"
    db.commit()
    db.refresh(o)
    logger.info("order %s created total=%s type=%s table=%s", o.order_no, o.total, o.order_type, o.table_id)
    return _serialize_order(o)


# ---------- LIST ----------
@router.get("")
def list_orders(
    status: Optional[OrderStatus] = None,
    business_date: Optional[date] = Query(default=None, alias="date"),
    include_archived: bool = False,
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    q = db.query(Order)
    if status is not None:
        q = q.filter(Order.status == status.value)
    if business_date is not None:
        q = q.filter(Order.business_date == business_date)
    if not include_archived:
        q = q.filter(Order.archived.is_(False))
    rows = q.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
    return [_serialize_order(o) for o in rows]


@router.get("/active-by-phone")
def active_orders_by_phone(phone: str, db: Session = Depends(get_db)):
    rows = (
        db.query(Order)
        .filter(Order.customer_phone == phone.strip(), Order.status.in_(ACTIVE), Order.archived.is_(False))
        .order_by(Order.created_at)
        .all()
    )
    return {
        "has_active_order": bool(rows),
        "orders": [
            {"id": o.id, "order_no": o.order_no, "total": float(o.total or 0), "item_count": len(o.items), "table_id": o.table_id}
            for o in rows
        ],
    }


@router.get("/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db)):
    return _serialize_order(_get_order(db, order_id))


# ---------- STATUS ----------
@router.patch("/{order_id}/status")
def update_status(order_id: int, payload: StatusUpdate, db: Session = Depends(get_db)):
    o = _get_order(db, order_id)
    try:
        check_transition(o, payload.status, _policy(payload.prepayment_required), payload.reason)
    except GuardError as exc:
        raise _reject(exc)

    previous = o.status
    values = {Order.status: payload.status.value}
    if payload.status == OrderStatus.cancel:
        values[Order.cancellation_reason] = payload.reason.strip()
        values[Order.cancelled_by] = payload.by_user
        values[Order.payment_status] = payment_status_after_cancel(o).value

    # conditional on the state the guard saw; a racing writer makes this a no-op
    n = (
        db.query(Order)
        .filter(Order.id == o.id, Order.status == previous, Order.archived.is_(False))
        .update(values, synchronize_session=False)
    )
    if n != 1:
        db.rollback()
        raise HTTPException(status_code=409, detail="ORDER_CHANGED")
    db.commit()
    db.refresh(o)
    logger.info("order %s: %s -> %s by %s", o.order_no, previous, o.status, payload.by_user)
    if o.payment_status == PaymentStatus.refunded.value:
        logger.warning("order %s cancelled after payment; refund %s manually", o.order_no, o.total)
    return _serialize_order(o)


# ---------- PAY ----------
@router.post("/{order_id}/pay")
def pay_order(order_id: int, payload: Optional[PayRequest] = None, db: Session = Depends(get_db)):
    payload = payload or PayRequest()
    o = _get_order(db, order_id)
    try:
        check_payable(o)
    except GuardError as exc:
        raise _reject(exc)

    shift = current_shift(db)
    if shift is None:
        raise HTTPException(status_code=409, detail="SHIFT_CLOSED")

    method = payload.method.value if payload.method else o.payment_method
    new_status = status_after_payment(o, _policy(payload.prepayment_required))
    now = utcnow()

    # unpaid -> paid at most once, whatever the number of concurrent requests
    n = (
        db.query(Order)
        .filter(
            Order.id == o.id,
            Order.payment_status == PaymentStatus.unpaid.value,
            Order.archived.is_(False),
            Order.status.in_(ACTIVE),
        )
        .update(
            {
                Order.payment_status: PaymentStatus.paid.value,
                Order.payment_method: method,
                Order.status: new_status.value,
                Order.shift_id: shift.id,
                Order.paid_at: now,
            },
            synchronize_session=False,
        )
    )
    if n != 1:
        db.rollback()
        raise HTTPException(status_code=409, detail="ORDER_ALREADY_PAID")

    amount = round_money(o.total)
    attribute_payment(db, shift, method, amount)
    db.refresh(o)
    points = award_points(db, o)
    db.commit()
    db.refresh(o)
    logger.info("order %s paid %s via %s (shift %s)", o.order_no, amount, method, shift.id)
    return {
        "order": _serialize_order(o),
        "shift_id": shift.id,
        "method": method,
        "amount": amount,
        "points_earned": points,
        "replay": False,
    }


# ---------- MERGE ----------
@router.post("/merge")
def merge_orders(payload: MergeRequest, db: Session = Depends(get_db)):
    ids = list(dict.fromkeys(payload.ids))
    found = {o.id: o for o in db.query(Order).filter(Order.id.in_(ids)).all()}
    try:
        plan = merge_rules.plan_merge(ids, found)
    except GuardError as exc:
        raise _reject(exc)

    survivor = found[plan.survivor_id]
    archived: List[Order] = [found[i] for i in plan.archived_ids]

    n = (
        db.query(Order)
        .filter(
            Order.id.in_(plan.archived_ids),
            Order.archived.is_(False),
            Order.status.in_(ACTIVE),
            Order.payment_status == PaymentStatus.unpaid.value,
        )
        .update({Order.archived: True, Order.merged_into_id: survivor.id}, synchronize_session=False)
    )
    if n != len(plan.archived_ids):
        db.rollback()
        raise HTTPException(status_code=409, detail="MERGE_CONFLICT")

    # copies keep the archived bills intact for audit
    for other in archived:
        for l in other.items:
            survivor.items.append(
                OrderLine(
                    menu_id=l.menu_id,
                    name=l.name,
                    qty=l.qty,
                    unit_price=l.unit_price,
                    subtotal=l.subtotal,
                    note=l.note,
                )
            )
    total = round_money(sum(float(l.subtotal or 0) for l in survivor.items))
    n = (
        db.query(Order)
        .filter(
            Order.id == survivor.id,
            Order.archived.is_(False),
            Order.status.in_(ACTIVE),
            Order.payment_status == PaymentStatus.unpaid.value,
        )
        .update({Order.total: total}, synchronize_session=False)
    )
    if n != 1:
        db.rollback()
        raise HTTPException(status_code=409, detail="MERGE_CONFLICT")
    db.commit()
    db.refresh(survivor)
    logger.info(
        "merge: %s absorbed %s total=%s", survivor.order_no, [o.order_no for o in archived], survivor.total
    )
    for w in plan.warnings:
        logger.info("merge %s: %s", survivor.order_no, w)
    return {"survivor": _serialize_order(survivor), "archived_ids": plan.archived_ids}
