import logging

from sqlalchemy.orm import Session

from .core.logging import configure_logging
from .db import SessionLocal, init_db
from .models.customer import Customer
from .models.table import CafeTable

logger = logging.getLogger(__name__)


def get_or_create(session: Session, model, defaults=None, **kwargs):
    inst = session.query(model).filter_by(**kwargs).first()
    if inst:
        return inst, False
    params = dict(kwargs)
    if defaults:
        params.update(defaults)
    inst = model(**params)
    session.add(inst)
    session.commit()
    session.refresh(inst)
    return inst, True


def main():
    configure_logging()
    init_db()
    db: Session = SessionLocal()
    try:
        created = 0
        for number in range(1, 9):
            _, new = get_or_create(
                db,
                CafeTable,
                number=str(number),
                defaults={"capacity": 2 if number <= 2 else 4, "status": "available"},
            )
            created += int(new)

        cust, _ = get_or_create(
            db,
            Customer,
            phone="081234567890",
            defaults={"name": "Demo Customer", "points": 0, "total_spent": 0, "visit_count": 0},
        )
        logger.info("seed OK | tables created=%s customer_id=%s", created, cust.id)
    finally:
        db.close()


if __name__ == "__main__":
    main()
