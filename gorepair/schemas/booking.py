"""Booking request schemas and response serializers"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field

from gorepair.models.booking import Booking, BookingStatus, PaymentMethod
from gorepair.models.otp import BookingOTP
from gorepair.schemas.common import Address, CamelModel, TimeSlot


# ============ REQUESTS ============

class ServiceLineRequest(CamelModel):
    service_id: int = Field(..., gt=0)
    quantity: int = Field(1, ge=1, le=100)


class BookingCreateRequest(CamelModel):
    """Request schema for creating a booking"""
    services: List[ServiceLineRequest] = Field(..., min_length=1)
    address: Address
    schedule_date: datetime
    preferred_time_slot: TimeSlot
    payment_method: PaymentMethod = PaymentMethod.CASH
    discount_coupon: Optional[str] = Field(None, max_length=50)
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


class AssignTechnicianRequest(CamelModel):
    """Omit technician_id to let the matching engine pick"""
    technician_id: Optional[int] = Field(None, gt=0)
    force_assign: bool = False


class VerifyOTPRequest(CamelModel):
    otp: str = Field(..., min_length=4, max_length=10, pattern=r"^\d+$")


class StatusUpdateRequest(CamelModel):
    status: BookingStatus
    note: Optional[str] = Field(None, max_length=1000)


class CancelBookingRequest(CamelModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class RescheduleRequest(CamelModel):
    schedule_date: datetime
    preferred_time_slot: TimeSlot
    reason: Optional[str] = Field(None, max_length=1000)


class CompleteBookingRequest(CamelModel):
    note: Optional[str] = Field(None, max_length=1000)


class ReviewRequest(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=2000)


class PartLineRequest(CamelModel):
    part_id: int = Field(..., gt=0)
    quantity: int = Field(1, ge=1, le=1000)


class AddPartsRequest(CamelModel):
    parts: List[PartLineRequest] = Field(..., min_length=1)


# ============ SERIALIZERS ============

def serialize_history(booking: Booking) -> List[Dict[str, Any]]:
    return [
        {
            "sequence": h.sequence,
            "status": h.status.value,
            "changed_at": h.changed_at.isoformat() if h.changed_at else None,
            "changed_by": h.changed_by_id,
            "note": h.note,
            "metadata": h.details,
        }
        for h in booking.status_history
    ]


def serialize_booking(booking: Booking, include_history: bool = True) -> Dict[str, Any]:
    data = {
        "id": booking.id,
        "booking_number": booking.booking_number,
        "version": booking.version,
        "user_id": booking.user_id,
        "assigned_technician_id": booking.assigned_technician_id,
        "bulk_booking_id": booking.bulk_booking_id,
        "status": booking.status.value,
        "services": booking.services,
        "parts": booking.parts,
        "address": booking.address,
        "latitude": booking.latitude,
        "longitude": booking.longitude,
        "schedule_date": booking.schedule_date.isoformat() if booking.schedule_date else None,
        "preferred_time_slot": booking.preferred_time_slot,
        "payment": {
            "method": booking.payment_method.value if booking.payment_method else None,
            "status": booking.payment_status,
            "advance_payment": booking.advance_payment,
        },
        "total_amount": float(booking.total_amount or 0),
        "parts_amount": float(booking.parts_amount or 0),
        "discount": {
            "coupon": booking.discount_coupon,
            "amount": float(booking.discount_amount or 0),
        },
        "final_amount": float(booking.final_amount or 0),
        "cancellation_reason": booking.cancellation_reason,
        "declined_by": booking.declined_by,
        "notes": booking.notes,
        "selfie_url": booking.selfie_url,
        "before_image_url": booking.before_image_url,
        "after_image_url": booking.after_image_url,
        "completed_at": booking.completed_at.isoformat() if booking.completed_at else None,
        "rating": booking.rating,
        "review": booking.review,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
        "updated_at": booking.updated_at.isoformat() if booking.updated_at else None,
    }
    if include_history:
        data["status_history"] = serialize_history(booking)
    return data


def serialize_otp(otp: BookingOTP, include_code: bool = False) -> Dict[str, Any]:
    data = {
        "booking_id": otp.booking_id,
        "technician_id": otp.technician_id,
        "expires_at": otp.expires_at.isoformat(),
        "attempts": otp.attempts,
    }
    if include_code:
        data["otp"] = otp.code
    return data
