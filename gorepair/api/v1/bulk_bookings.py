"""Bulk booking endpoints"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from gorepair.db.session import get_db
from gorepair.dependencies.auth import get_current_user, get_current_staff_user
from gorepair.exceptions import Forbidden
from gorepair.models.user import User
from gorepair.schemas.bulk_booking import BulkBookingCreateRequest, serialize_bulk_booking
from gorepair.schemas.common import success_response
from gorepair.services.bulk_booking import BulkOrchestrator

router = APIRouter()


def create_bulk_booking_for(db: Session, current_user: User, client_id: int, payload: BulkBookingCreateRequest) -> dict:
    """Shared by both creation paths. Non-staff users may only batch for themselves"""
    if not current_user.is_staff and client_id != current_user.id:
        raise Forbidden("You can only create bulk bookings for yourself")

    location = payload.location
    bulk, errors = BulkOrchestrator(db).create_bulk(
        current_user,
        client_id=client_id,
        location={
            "address": location.address.to_record(),
            "latitude": location.coordinates.latitude,
            "longitude": location.coordinates.longitude,
            "formatted_address": location.formatted_address,
        },
        items=payload.bookings,
        scheduled_date=payload.scheduled_date,
        preferred_time_slot=payload.preferred_time_slot.model_dump(),
        notes=payload.notes,
        priority=payload.priority,
        tags=payload.tags
    )

    return success_response(
        f"Bulk booking created successfully with {bulk.booking_count} booking(s)",
        {
            "bulk_booking": serialize_bulk_booking(bulk),
            "errors": errors or None
        },
        status.HTTP_201_CREATED
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_bulk_booking(
    payload: BulkBookingCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Create several bookings at one shared location

    Items that fail validation are reported in ``errors`` by index and the
    rest are still created. If every item fails nothing is stored.
    """
    client_id = payload.client_id or current_user.id
    return create_bulk_booking_for(db, current_user, client_id, payload)


@router.get("/{bulk_id}")
async def get_bulk_booking(
    bulk_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    bulk = BulkOrchestrator(db).get_bulk(bulk_id)
    if not current_user.is_staff and bulk.client_id != current_user.id:
        raise Forbidden("You do not have access to this bulk booking")
    return success_response("Bulk booking retrieved successfully", serialize_bulk_booking(bulk))


@router.post("/{bulk_id}/refresh")
async def refresh_bulk_booking(
    bulk_id: int,
    current_user: User = Depends(get_current_staff_user),
    db: Session = Depends(get_db)
):
    """Recompute completion percentage and status from the member bookings"""
    orchestrator = BulkOrchestrator(db)
    bulk = orchestrator.refresh(orchestrator.get_bulk(bulk_id), current_user)
    return success_response("Bulk booking status refreshed", serialize_bulk_booking(bulk))


@router.delete("/{bulk_id}")
async def delete_bulk_booking(
    bulk_id: int,
    current_user: User = Depends(get_current_staff_user),
    db: Session = Depends(get_db)
):
    """Soft delete; member bookings are left untouched"""
    orchestrator = BulkOrchestrator(db)
    orchestrator.soft_delete(orchestrator.get_bulk(bulk_id), current_user)
    return success_response("Bulk booking deleted successfully", {"id": bulk_id})
