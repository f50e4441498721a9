from sqlalchemy import Column, DateTime, Integer, Numeric, String

from ..db import Base


class Customer(Base):
    __tablename__ = "customer"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=True)
    phone = Column(String(40), nullable=True, index=True)
    points = Column(Integer, nullable=False, default=0)
    total_spent = Column(Numeric(12, 2), nullable=False, default=0)
    visit_count = Column(Integer, nullable=False, default=0)
    last_order_at = Column(DateTime)
