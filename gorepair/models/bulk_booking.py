"""Bulk (multi-booking) orders"""
from sqlalchemy import Column, String, Text, Numeric, Integer, Float, Boolean, ForeignKey, DateTime, Enum as SQLEnum, JSON
from sqlalchemy.orm import relationship
import enum

from gorepair.models.base import Base, TimestampMixin


class BulkBookingStatus(str, enum.Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PARTIALLY_COMPLETED = "partially_completed"


class BulkBooking(Base, TimestampMixin):
    """Aggregate record grouping bookings submitted in one batch"""
    __tablename__ = "bulk_bookings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    bulk_booking_number = Column(String(50), unique=True, nullable=False, index=True)

    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Shared location for every member booking
    location = Column(JSON, nullable=False)  # {"address": {...}, "formatted_address": str}
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    booking_count = Column(Integer, nullable=False, default=0)
    service_types = Column(JSON, nullable=False, default=list)

    scheduled_date = Column(DateTime, nullable=False, index=True)
    preferred_time_slot = Column(JSON, nullable=False)
    estimated_duration = Column(Integer, nullable=False, default=0)  # minutes

    status = Column(SQLEnum(BulkBookingStatus), nullable=False, default=BulkBookingStatus.PENDING, index=True)
    completion_percentage = Column(Integer, nullable=False, default=0)

    # [{"technician_id", "technician_name", "booking_ids": [...], "status"}]
    assigned_technicians = Column(JSON, nullable=False, default=list)

    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(10, 2), nullable=False, default=0)
    payment_status = Column(String(20), nullable=False, default="pending")

    notes = Column(Text, nullable=True)
    priority = Column(String(10), nullable=False, default="medium")
    tags = Column(JSON, nullable=False, default=list)
    status_history = Column(JSON, nullable=False, default=list)

    # Audit
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    deleted_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    bookings = relationship("Booking", back_populates="bulk_booking", order_by="Booking.id")

    def __repr__(self):
        return f"<BulkBooking {self.bulk_booking_number} ({self.booking_count})>"
