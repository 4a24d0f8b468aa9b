"""Bulk booking schemas"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field

from gorepair.models.booking import PaymentMethod
from gorepair.models.bulk_booking import BulkBooking
from gorepair.schemas.common import Address, CamelModel, Coordinates, TimeSlot
from gorepair.schemas.booking import ServiceLineRequest


class BulkLocation(CamelModel):
    """Shared location; coordinates are mandatory for a batch"""
    address: Address
    coordinates: Coordinates
    formatted_address: Optional[str] = None


class BulkBookingItem(CamelModel):
    """One member booking. Validated per item so one bad entry cannot sink the batch"""
    services: List[ServiceLineRequest] = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.CASH
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


class BulkBookingCreateRequest(CamelModel):
    client_id: Optional[int] = Field(None, gt=0)
    location: BulkLocation
    # Raw payloads, validated one by one as BulkBookingItem
    bookings: List[Dict[str, Any]] = Field(..., min_length=1)
    scheduled_date: datetime
    preferred_time_slot: TimeSlot
    notes: Optional[str] = Field(None, max_length=2000)
    priority: str = Field("medium", pattern=r"^(low|medium|high)$")
    tags: List[str] = Field(default_factory=list)


def serialize_bulk_booking(bulk: BulkBooking, include_bookings: bool = True) -> Dict[str, Any]:
    data = {
        "id": bulk.id,
        "bulk_booking_number": bulk.bulk_booking_number,
        "client_id": bulk.client_id,
        "location": bulk.location,
        "latitude": bulk.latitude,
        "longitude": bulk.longitude,
        "booking_count": bulk.booking_count,
        "booking_ids": [b.id for b in bulk.bookings],
        "service_types": bulk.service_types,
        "scheduled_date": bulk.scheduled_date.isoformat() if bulk.scheduled_date else None,
        "preferred_time_slot": bulk.preferred_time_slot,
        "estimated_duration": bulk.estimated_duration,
        "status": bulk.status.value,
        "completion_percentage": bulk.completion_percentage,
        "assigned_technicians": bulk.assigned_technicians,
        "total_amount": float(bulk.total_amount or 0),
        "amount_paid": float(bulk.amount_paid or 0),
        "payment_status": bulk.payment_status,
        "notes": bulk.notes,
        "priority": bulk.priority,
        "tags": bulk.tags,
        "status_history": bulk.status_history,
        "deleted": bulk.deleted,
        "created_at": bulk.created_at.isoformat() if bulk.created_at else None,
    }
    if include_bookings:
        data["bookings"] = [
            {"id": b.id, "booking_number": b.booking_number, "status": b.status.value, "services": b.services}
            for b in bulk.bookings
        ]
    return data
