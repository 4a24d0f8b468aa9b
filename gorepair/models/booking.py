"""Service booking models"""
from datetime import datetime

from sqlalchemy import (
    Column, String, Text, Numeric, Integer, Float, ForeignKey, DateTime,
    Enum as SQLEnum, JSON, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
import enum

from gorepair.models.base import Base, TimestampMixin


class BookingStatus(str, enum.Enum):
    """Service booking status"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ASSIGNED = "assigned"
    REACHED = "reached"
    OTP_PENDING = "otp_pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    REJECTED = "rejected"


class PaymentMethod(str, enum.Enum):
    ONLINE = "online"
    WALLET = "wallet"
    CASH = "cash"
    CARD = "card"
    UPI = "upi"


class Booking(Base, TimestampMixin):
    """Service bookings"""
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("final_amount >= 0", name="ck_booking_final_amount_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_number = Column(String(50), unique=True, nullable=False, index=True)
    version = Column(Integer, nullable=False)

    # Parties
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assigned_technician_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    bulk_booking_id = Column(Integer, ForeignKey("bulk_bookings.id"), nullable=True, index=True)

    # Line items, snapshotted from the catalog.
    # services: [{"service_id", "name", "category", "price", "quantity", "estimated_duration", "skills_required"}]
    # parts:    [{"part_id", "name", "price", "quantity"}]
    services = Column(JSON, nullable=False, default=list)
    parts = Column(JSON, nullable=False, default=list)

    # Address
    address = Column(JSON, nullable=False)  # street, city, state, country, pincode, landmark, tag
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Schedule
    schedule_date = Column(DateTime, nullable=False, index=True)
    preferred_time_slot = Column(JSON, nullable=False)  # {"start": "HH:MM", "end": "HH:MM"}

    status = Column(SQLEnum(BookingStatus), nullable=False, default=BookingStatus.PENDING, index=True)
    cancellation_reason = Column(Text, nullable=True)
    declined_by = Column(JSON, nullable=False, default=list)  # [{"technician_id", "declined_at"}]

    # Payment
    payment_method = Column(SQLEnum(PaymentMethod), nullable=False, default=PaymentMethod.CASH)
    payment_status = Column(String(50), nullable=False, default="pending")
    advance_payment = Column(JSON, nullable=True)  # {"amount", "status", "transaction_id", "payment_date"}

    # Amounts. final_amount = total_amount + parts_amount - discount_amount
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    parts_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_coupon = Column(String(50), nullable=True)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    final_amount = Column(Numeric(10, 2), nullable=False, default=0)

    notes = Column(Text, nullable=True)

    # Arrival and job evidence
    selfie_url = Column(String(500), nullable=True)
    selfie_uploaded_at = Column(DateTime, nullable=True)
    before_image_url = Column(String(500), nullable=True)
    before_image_uploaded_at = Column(DateTime, nullable=True)
    after_image_url = Column(String(500), nullable=True)
    after_image_uploaded_at = Column(DateTime, nullable=True)

    completed_at = Column(DateTime, nullable=True)

    # Feedback, captured once after completion
    rating = Column(Integer, nullable=True)  # 1-5
    review = Column(Text, nullable=True)
    review_date = Column(DateTime, nullable=True)

    # Relationships
    customer = relationship("User", foreign_keys=[user_id])
    technician = relationship("User", foreign_keys=[assigned_technician_id])
    bulk_booking = relationship("BulkBooking", back_populates="bookings")
    status_history = relationship(
        "BookingStatusHistory",
        back_populates="booking",
        order_by="BookingStatusHistory.sequence",
        cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Booking {self.booking_number} - {self.status}>"


class BookingStatusHistory(Base):
    """Append-only status log; (booking_id, sequence) orders the entries"""
    __tablename__ = "booking_status_history"
    __table_args__ = (
        UniqueConstraint("booking_id", "sequence", name="uq_booking_history_sequence"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    status = Column(SQLEnum(BookingStatus), nullable=False)
    changed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    changed_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    note = Column(Text, nullable=True)
    details = Column("metadata", JSON, nullable=True)

    booking = relationship("Booking", back_populates="status_history")

    def __repr__(self):
        return f"<BookingStatusHistory {self.booking_id}#{self.sequence} {self.status}>"
