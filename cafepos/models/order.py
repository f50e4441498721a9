from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from ..core.clock import utcnow
from ..db import Base


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, index=True)
    order_no = Column(String(20), unique=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    business_date = Column(Date, nullable=False, index=True)

    customer_name = Column(String(120))
    customer_phone = Column(String(40), index=True)
    customer_id = Column(Integer, ForeignKey("customer.id"))
    order_type = Column(String(20), nullable=False, default="dine-in")  # dine-in | take-away
    table_id = Column(Integer, ForeignKey("cafe_table.id"))

    total = Column(Numeric(12, 2), default=0)
    payment_method = Column(String(20), nullable=False, default="cash")  # cash | qris | bank | ewallet
    payment_status = Column(String(20), nullable=False, default="unpaid")  # unpaid | paid | refunded
    status = Column(String(20), nullable=False, default="new", index=True)
    notes = Column(String(500))

    archived = Column(Boolean, nullable=False, default=False)
    merged_into_id = Column(Integer, ForeignKey("orders.id"))
    shift_id = Column(Integer, ForeignKey("shift.id"), index=True)
    paid_at = Column(DateTime)
    cancellation_reason = Column(String(255))
    cancelled_by = Column(String(60))

    items = relationship(
        "OrderLine",
        order_by="OrderLine.id",
        cascade="all, delete-orphan",
        back_populates="order",
    )


class OrderLine(Base):
    __tablename__ = "order_line"
    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    menu_id = Column(Integer, nullable=False)
    name = Column(String(120), nullable=False)
    qty = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    subtotal = Column(Numeric(12, 2), default=0)
    note = Column(String(255))

    order = relationship("Order", back_populates="items")
