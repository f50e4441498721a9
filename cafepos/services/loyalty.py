import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..core.config import settings
from ..domain.orders import round_money
from ..models.customer import Customer
from ..models.order import Order

logger = logging.getLogger(__name__)

MIN_PHONE_LEN = 6


def _find_customer(db: Session, order: Order) -> Optional[Customer]:
    if order.customer_id:
        return db.get(Customer, order.customer_id)
    phone = (order.customer_phone or "").strip()
    if len(phone) >= MIN_PHONE_LEN:
        return db.query(Customer).filter(Customer.phone == phone).first()
    name = (order.customer_name or "").strip()
    if name:
        return db.query(Customer).filter(func.lower(Customer.name) == name.lower()).first()
    return None


def points_for(total: float, ratio: Optional[int] = None) -> int:
    ratio = ratio or settings.loyalty_point_ratio
    if ratio <= 0:
        return 0
    return int(round_money(total) // ratio)


def award_points(db: Session, order: Order) -> int:
    """
    Links the order to a customer (creating one when the order carries a
    name or phone) and credits visit, spend and points for its total.
    Returns the points earned; 0 for anonymous orders. The commit is left
    to the caller (payment router).
    """
    has_phone = len((order.customer_phone or "").strip()) >= MIN_PHONE_LEN
    has_name = bool((order.customer_name or "").strip())
    if not (order.customer_id or has_phone or has_name):
        return 0

    customer = _find_customer(db, order)
    if customer is None:
        customer = Customer(
            name=(order.customer_name or "").strip() or None,
            phone=(order.customer_phone or "").strip() or None,
            points=0,
            total_spent=0,
            visit_count=0,
        )
        db.add(customer)
        db.flush()
    order.customer_id = customer.id

    if order.customer_name and not customer.name:
        customer.name = order.customer_name.strip()
    if has_phone and not customer.phone:
        customer.phone = order.customer_phone.strip()

    earned = points_for(float(order.total or 0))
    customer.total_spent = round_money(float(customer.total_spent or 0) + float(order.total or 0))
    customer.visit_count = (customer.visit_count or 0) + 1
    customer.points = (customer.points or 0) + earned
    customer.last_order_at = utcnow()
    logger.info("customer %s: +%s points (order %s)", customer.id, earned, order.order_no)
    return earned
