"""Technician endpoints: own jobs, assignment response, availability"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Literal, Optional
import logging

from gorepair.db.session import get_db
from gorepair.dependencies.auth import get_current_technician_user, require_any_role
from gorepair.exceptions import NotFound
from gorepair.models.booking import Booking, BookingStatus
from gorepair.models.technician import TechnicianProfile
from gorepair.models.user import User, UserRole
from gorepair.schemas.booking import serialize_booking
from gorepair.schemas.common import CamelModel, success_response
from gorepair.schemas.technician import AvailabilityUpdateRequest, serialize_technician
from gorepair.services.ledger import BookingLedger

logger = logging.getLogger(__name__)

router = APIRouter()


# ============ SCHEMAS ============

class AssignmentResponseRequest(CamelModel):
    action: Literal["accept", "decline"]
    reason: Optional[str] = None


def _profile_for(db: Session, user: User) -> TechnicianProfile:
    profile = db.query(TechnicianProfile).filter(TechnicianProfile.user_id == user.id).first()
    if not profile:
        raise NotFound("Technician profile not found")
    return profile


# ============ TECHNICIAN ENDPOINTS ============

@router.get("/me")
async def get_my_profile(
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    return success_response("Technician profile retrieved", serialize_technician(_profile_for(db, current_user)))


@router.get("/me/bookings")
async def get_my_assigned_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    """Bookings currently or previously assigned to the technician"""
    query = db.query(Booking).filter(Booking.assigned_technician_id == current_user.id)
    if status_filter:
        query = query.filter(Booking.status == status_filter)

    total = query.count()
    bookings = query.order_by(Booking.schedule_date.asc(), Booking.id.asc()).offset(skip).limit(limit).all()

    return success_response("Assigned bookings retrieved successfully", {
        "bookings": [serialize_booking(b, include_history=False) for b in bookings],
        "total": total,
        "skip": skip,
        "limit": limit
    })


@router.patch("/bookings/{booking_id}/assignment")
async def respond_to_assignment(
    booking_id: int,
    payload: AssignmentResponseRequest,
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    """Accept keeps the job; decline returns it to the pool and excludes this technician from re-matching"""
    ledger = BookingLedger(db)
    booking = ledger.get_booking(booking_id)

    if payload.action == "accept":
        booking = ledger.accept(booking, current_user)
        message = "Assignment accepted"
    else:
        booking = ledger.decline(booking, current_user, payload.reason)
        message = "Assignment declined"

    return success_response(message, serialize_booking(booking))


@router.patch("/me/availability")
async def update_my_availability(
    payload: AvailabilityUpdateRequest,
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    profile = _profile_for(db, current_user)

    if payload.working_hours is not None:
        hours = dict(profile.working_hours or {})
        for day, window in payload.working_hours.items():
            hours[day] = window.model_dump()
        profile.working_hours = hours

    if payload.is_on_break is not None:
        profile.is_on_break = payload.is_on_break

    if payload.clear_break_window:
        profile.break_start = None
        profile.break_end = None
    elif payload.break_window is not None:
        profile.break_start = payload.break_window.start
        profile.break_end = payload.break_window.end

    if payload.is_online is not None:
        current_user.is_online = payload.is_online

    if payload.location is not None:
        current_user.latitude = payload.location.latitude
        current_user.longitude = payload.location.longitude

    db.commit()
    db.refresh(profile)

    logger.info(f"Technician {current_user.id} updated availability")
    return success_response("Availability updated successfully", serialize_technician(profile))


@router.post("/{technician_id}/workload/sync")
async def sync_technician_workload(
    technician_id: int,
    current_user: User = Depends(require_any_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    """Recount the technician's held bookings and rewrite the workload counter (admin)"""
    result = BookingLedger(db).sync_workload(technician_id)
    return success_response("Workload synchronized", {"technician_id": technician_id, **result})
