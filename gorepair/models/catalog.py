"""Service and part catalog"""
from sqlalchemy import Column, String, Text, Boolean, Integer, Numeric, JSON

from gorepair.models.base import Base, TimestampMixin


class Service(Base, TimestampMixin):
    """Bookable repair services"""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=False, default="Other", index=True)

    price = Column(Numeric(10, 2), nullable=False)
    estimated_duration = Column(Integer, nullable=False, default=60)  # minutes
    skills_required = Column(JSON, nullable=False, default=list)

    is_active = Column(Boolean, default=True)

    def __repr__(self):
        return f"<Service {self.name}>"


class Part(Base, TimestampMixin):
    """Spare parts technicians can fit during a job"""
    __tablename__ = "parts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    sku = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    quantity_in_stock = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True)

    def __repr__(self):
        return f"<Part {self.sku}>"
