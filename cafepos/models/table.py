from sqlalchemy import Column, DateTime, Integer, String

from ..db import Base


class CafeTable(Base):
    __tablename__ = "cafe_table"
    id = Column(Integer, primary_key=True, index=True)
    number = Column(String(10), unique=True, nullable=False)
    capacity = Column(Integer, default=4)
    status = Column(String(20), nullable=False, default="available")  # available | occupied | reserved | dirty
    occupied_since = Column(DateTime)
