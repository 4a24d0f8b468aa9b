"""Arrival verification codes"""
from datetime import datetime

from sqlalchemy import Column, String, Boolean, Integer, ForeignKey, DateTime, Index

from gorepair.models.base import Base


class BookingOTP(Base):
    """One-time code the customer hands to the technician on site"""
    __tablename__ = "booking_otps"
    __table_args__ = (
        Index("ix_booking_otps_pair", "booking_id", "technician_id", "is_used"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    technician_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    code = Column(String(10), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    is_used = Column(Boolean, default=False, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    used_at = Column(DateTime, nullable=True)

    def is_active(self, now: datetime) -> bool:
        return not self.is_used and self.expires_at > now

    def __repr__(self):
        return f"<BookingOTP booking={self.booking_id} attempts={self.attempts} used={self.is_used}>"
