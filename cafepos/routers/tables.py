import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..core.enums import OrderStatus, TableStatus
from ..core.errors import GuardError, http_status_for
from ..core.schemas import TableStatusUpdate
from ..db import get_db
from ..domain.tables import check_move
from ..models.order import Order
from ..models.table import CafeTable

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tables", tags=["tables"])

ACTIVE = [OrderStatus.new.value, OrderStatus.pending_payment.value, OrderStatus.process.value]


def _serialize_table(t: CafeTable) -> dict:
    return {
        "id": t.id,
        "number": t.number,
        "capacity": t.capacity,
        "status": t.status,
        "occupied_since": t.occupied_since,
    }


def _get_table(db: Session, table_id: int) -> CafeTable:
    t = db.get(CafeTable, table_id)
    if not t:
        raise HTTPException(status_code=404, detail="TABLE_NOT_FOUND")
    return t


def _set_status(t: CafeTable, status: TableStatus) -> None:
    if status == TableStatus.occupied:
        if t.status != TableStatus.occupied.value:
            t.occupied_since = utcnow()
    else:
        t.occupied_since = None
    t.status = status.value


@router.get("")
def list_tables(db: Session = Depends(get_db)):
    return [_serialize_table(t) for t in db.query(CafeTable).order_by(CafeTable.id).all()]


@router.patch("/{table_id}/status")
def update_table_status(table_id: int, payload: TableStatusUpdate, db: Session = Depends(get_db)):
    t = _get_table(db, table_id)
    previous = t.status
    _set_status(t, payload.status)
    db.commit()
    db.refresh(t)
    logger.info("table %s: %s -> %s", t.number, previous, t.status)
    return _serialize_table(t)


@router.post("/{table_id}/clean")
def clean_table(table_id: int, db: Session = Depends(get_db)):
    t = _get_table(db, table_id)
    _set_status(t, TableStatus.available)
    db.commit()
    db.refresh(t)
    logger.info("table %s cleaned", t.number)
    return _serialize_table(t)


@router.post("/{from_id}/move/{to_id}")
def move_table(from_id: int, to_id: int, db: Session = Depends(get_db)):
    """Seat the party of ``from_id`` at ``to_id``, taking its open bills along."""
    source = _get_table(db, from_id)
    target = _get_table(db, to_id)
    try:
        check_move(source, target)
    except GuardError as exc:
        raise HTTPException(status_code=http_status_for(exc.code), detail=exc.code)

    since = source.occupied_since or utcnow()
    # claim the target only while it is still free
    n = (
        db.query(CafeTable)
        .filter(CafeTable.id == target.id, CafeTable.status == TableStatus.available.value)
        .update(
            {CafeTable.status: TableStatus.occupied.value, CafeTable.occupied_since: since},
            synchronize_session=False,
        )
    )
    if n != 1:
        db.rollback()
        raise HTTPException(status_code=409, detail="TABLE_NOT_AVAILABLE")

    moved = [
        o.id
        for o in db.query(Order)
        .filter(Order.table_id == source.id, Order.status.in_(ACTIVE), Order.archived.is_(False))
        .order_by(Order.created_at, Order.id)
        .all()
    ]
    if moved:
        db.query(Order).filter(Order.id.in_(moved)).update({Order.table_id: target.id}, synchronize_session=False)
    _set_status(source, TableStatus.available)
    db.commit()
    db.refresh(source)
    db.refresh(target)
    logger.info("table %s moved to %s with orders %s", source.number, target.number, moved)
    return {"from_table": _serialize_table(source), "to_table": _serialize_table(target), "moved_order_ids": moved}
