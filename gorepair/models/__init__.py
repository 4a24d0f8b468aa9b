"""Database models for the GoRepair booking core"""
from gorepair.models.base import Base
from gorepair.models.user import User, UserRole
from gorepair.models.technician import TechnicianProfile, TechnicianStatus
from gorepair.models.catalog import Service, Part
from gorepair.models.booking import Booking, BookingStatus, BookingStatusHistory, PaymentMethod
from gorepair.models.otp import BookingOTP
from gorepair.models.bulk_booking import BulkBooking, BulkBookingStatus

__all__ = [
    "Base",
    "User",
    "UserRole",
    "TechnicianProfile",
    "TechnicianStatus",
    "Service",
    "Part",
    "Booking",
    "BookingStatus",
    "BookingStatusHistory",
    "PaymentMethod",
    "BookingOTP",
    "BulkBooking",
    "BulkBookingStatus",
]
