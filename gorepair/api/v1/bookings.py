"""Service booking endpoints"""
from fastapi import APIRouter, Depends, File, Query, Request, Response, UploadFile, status
from sqlalchemy.orm import Session
from typing import Optional
import logging

from gorepair.config import settings
from gorepair.db.session import get_db
from gorepair.dependencies.auth import (
    get_current_user,
    get_current_staff_user,
    get_current_technician_user
)
from gorepair.exceptions import Forbidden, ValidationError
from gorepair.middleware.rate_limit import limiter
from gorepair.models.booking import Booking, BookingStatus
from gorepair.models.user import User
from gorepair.schemas.booking import (
    AddPartsRequest,
    AssignTechnicianRequest,
    BookingCreateRequest,
    CancelBookingRequest,
    CompleteBookingRequest,
    RescheduleRequest,
    ReviewRequest,
    StatusUpdateRequest,
    VerifyOTPRequest,
    serialize_booking,
    serialize_otp
)
from gorepair.schemas.bulk_booking import BulkBookingCreateRequest
from gorepair.schemas.common import success_response
from gorepair.services.geocoding_service import geocoding_service
from gorepair.services.ledger import BookingLedger
from gorepair.services.matching import MatchingEngine
from gorepair.services.reconciler import PartsReconciler
from gorepair.services.storage_service import file_storage_service
from gorepair.services.verification import VerificationGate
from gorepair.api.v1.bulk_bookings import create_bulk_booking_for

logger = logging.getLogger(__name__)

router = APIRouter()


# ============ BOOKING ENDPOINTS ============

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Create a booking for the current user

    Service lines are priced from the catalog. Addresses without
    coordinates are geocoded; if that fails the booking is still created and
    automatic matching skips the distance cutoff.
    """
    latitude = longitude = None
    if booking_data.address.location:
        latitude = booking_data.address.location.latitude
        longitude = booking_data.address.location.longitude
    else:
        coordinates = await geocoding_service.geocode_address(booking_data.address.to_record())
        if coordinates:
            latitude, longitude = coordinates

    booking = BookingLedger(db).create_booking(
        current_user,
        services=[s.model_dump() for s in booking_data.services],
        address=booking_data.address.to_record(),
        schedule_date=booking_data.schedule_date,
        preferred_time_slot=booking_data.preferred_time_slot.model_dump(),
        latitude=latitude,
        longitude=longitude,
        payment_method=booking_data.payment_method,
        discount_coupon=booking_data.discount_coupon,
        discount_amount=booking_data.discount_amount,
        notes=booking_data.notes
    )
    return success_response("Booking created successfully", serialize_booking(booking), status.HTTP_201_CREATED)


@router.get("/my")
async def get_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Bookings owned by the current user, newest first"""
    query = db.query(Booking).filter(Booking.user_id == current_user.id)
    if status_filter:
        query = query.filter(Booking.status == status_filter)

    total = query.count()
    bookings = query.order_by(Booking.created_at.desc(), Booking.id.desc()).offset(skip).limit(limit).all()

    return success_response("Bookings retrieved successfully", {
        "bookings": [serialize_booking(b, include_history=False) for b in bookings],
        "total": total,
        "skip": skip,
        "limit": limit
    })


@router.get("")
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    technician_id: Optional[int] = None,
    user_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_staff_user),
    db: Session = Depends(get_db)
):
    """All bookings (admin, manager, partner)"""
    query = db.query(Booking)
    if status_filter:
        query = query.filter(Booking.status == status_filter)
    if technician_id:
        query = query.filter(Booking.assigned_technician_id == technician_id)
    if user_id:
        query = query.filter(Booking.user_id == user_id)

    total = query.count()
    bookings = query.order_by(Booking.created_at.desc(), Booking.id.desc()).offset(skip).limit(limit).all()

    return success_response("Bookings retrieved successfully", {
        "bookings": [serialize_booking(b, include_history=False) for b in bookings],
        "total": total,
        "skip": skip,
        "limit": limit
    })


@router.get("/{booking_id}")
async def get_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ledger = BookingLedger(db)
    booking = ledger.get_booking(booking_id)
    ledger.ensure_can_view(booking, current_user)
    return success_response("Booking retrieved successfully", serialize_booking(booking))


# ============ STATUS ============

@router.patch("/{booking_id}/status")
async def update_booking_status(
    booking_id: int,
    payload: StatusUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Generic status change, validated against the transition table

    Staff may use any status without a dedicated endpoint. Owners may only
    cancel and assigned technicians may only complete.
    """
    if not current_user.is_staff and payload.status not in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
        raise Forbidden("Only staff can set this status")

    ledger = BookingLedger(db)
    booking = ledger.update_status(ledger.get_booking(booking_id), current_user, payload.status, payload.note)
    return success_response(f"Booking status updated to {booking.status.value}", serialize_booking(booking))


@router.post("/{booking_id}/cancel")
async def cancel_booking(
    booking_id: int,
    payload: CancelBookingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ledger = BookingLedger(db)
    booking = ledger.cancel(ledger.get_booking(booking_id), current_user, payload.reason)
    return success_response("Booking cancelled successfully", serialize_booking(booking))


@router.patch("/{booking_id}/reschedule")
async def reschedule_booking(
    booking_id: int,
    payload: RescheduleRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ledger = BookingLedger(db)
    booking = ledger.reschedule(
        ledger.get_booking(booking_id),
        current_user,
        payload.schedule_date,
        payload.preferred_time_slot.model_dump(),
        payload.reason
    )
    return success_response("Booking rescheduled successfully", serialize_booking(booking))


@router.patch("/{booking_id}/complete")
async def complete_booking(
    booking_id: int,
    payload: Optional[CompleteBookingRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ledger = BookingLedger(db)
    booking = ledger.complete(ledger.get_booking(booking_id), current_user, payload.note if payload else None)
    return success_response("Booking marked as completed", serialize_booking(booking))


@router.post("/{booking_id}/review")
async def review_booking(
    booking_id: int,
    payload: ReviewRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ledger = BookingLedger(db)
    booking = ledger.submit_review(ledger.get_booking(booking_id), current_user, payload.rating, payload.review)
    return success_response("Review submitted successfully", serialize_booking(booking, include_history=False))


# ============ TECHNICIAN ASSIGNMENT ============

@router.patch("/{booking_id}/technician/assign")
async def assign_technician(
    booking_id: int,
    payload: AssignTechnicianRequest,
    current_user: User = Depends(get_current_staff_user),
    db: Session = Depends(get_db)
):
    """
    Assign a technician (admin, manager, partner)

    Without ``technicianId`` the best available technician is picked
    automatically. ``forceAssign`` overrides the workload ceiling and
    replaces an existing technician.
    """
    ledger = BookingLedger(db)
    booking = ledger.get_booking(booking_id)
    result = MatchingEngine(db, ledger=ledger).assign(
        booking,
        current_user,
        technician_id=payload.technician_id,
        force=payload.force_assign
    )

    return success_response("Technician assigned successfully", {
        "booking": serialize_booking(result.booking),
        "technician": {
            "id": result.technician.id,
            "full_name": result.technician.full_name,
            "email": result.technician.email,
            "phone": result.technician.phone,
        },
        "assignment_type": result.assignment_type,
        "distance_km": round(result.distance_km, 2) if result.distance_km is not None else None,
        "override": result.override
    })


@router.post("/{booking_id}/technician/reached")
async def mark_technician_reached(
    booking_id: int,
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    ledger = BookingLedger(db)
    booking = VerificationGate(db, ledger=ledger).mark_reached(ledger.get_booking(booking_id), current_user)
    return success_response("Arrival recorded", serialize_booking(booking))


# ============ OTP ============

@router.post("/{booking_id}/otp")
@limiter.limit(settings.OTP_RATE_LIMIT)
async def generate_otp(
    request: Request,
    response: Response,
    booking_id: int,
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    """Issue a new arrival code; the customer reads it from GET /otp"""
    ledger = BookingLedger(db)
    otp = VerificationGate(db, ledger=ledger).generate_code(ledger.get_booking(booking_id), current_user)
    return success_response("OTP generated successfully", serialize_otp(otp))


@router.put("/{booking_id}/otp")
@limiter.limit(settings.OTP_RATE_LIMIT)
async def verify_otp(
    request: Request,
    response: Response,
    booking_id: int,
    payload: VerifyOTPRequest,
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    ledger = BookingLedger(db)
    booking = VerificationGate(db, ledger=ledger).verify_code(
        ledger.get_booking(booking_id), current_user, payload.otp
    )
    return success_response("OTP verified successfully. Work started", serialize_booking(booking))


@router.get("/{booking_id}/otp")
async def get_booking_otp(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ledger = BookingLedger(db)
    otp = VerificationGate(db, ledger=ledger).get_active_code(ledger.get_booking(booking_id), current_user)
    return success_response("Active OTP retrieved", serialize_otp(otp, include_code=True))


# ============ PARTS ============

@router.post("/{booking_id}/parts")
async def add_parts(
    booking_id: int,
    payload: AddPartsRequest,
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    ledger = BookingLedger(db)
    booking = PartsReconciler(db, ledger=ledger).add_parts(
        ledger.get_booking(booking_id),
        current_user,
        [p.model_dump() for p in payload.parts]
    )
    return success_response("Parts added successfully", serialize_booking(booking))


@router.delete("/{booking_id}/parts/{part_id}")
async def remove_part(
    booking_id: int,
    part_id: int,
    quantity: Optional[int] = Query(None, ge=1),
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    ledger = BookingLedger(db)
    booking = PartsReconciler(db, ledger=ledger).remove_part(
        ledger.get_booking(booking_id), current_user, part_id, quantity
    )
    return success_response("Part removed successfully", serialize_booking(booking))


# ============ JOB EVIDENCE ============

async def _store_evidence(
    db: Session,
    booking_id: int,
    technician: User,
    kind: str,
    upload: UploadFile
) -> Booking:
    """Write the image, then attach it; the file is removed again if the booking update fails"""
    ledger = BookingLedger(db)
    booking = ledger.get_booking(booking_id)
    ledger.ensure_can_attach(booking, technician, kind)

    extension = (upload.filename or "").rsplit(".", 1)[-1].lower()
    if extension not in settings.ALLOWED_IMAGE_EXTENSIONS:
        raise ValidationError(f"Unsupported file type. Allowed: {', '.join(settings.ALLOWED_IMAGE_EXTENSIONS)}")

    content = await upload.read()
    if not content:
        raise ValidationError("Uploaded file is empty")
    if len(content) > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
        raise ValidationError(f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE_MB}MB")

    path = file_storage_service.build_path(booking.booking_number, kind, upload.filename)
    url = file_storage_service.upload_file(content, path)
    try:
        return ledger.attach_image(booking, technician, kind, url)
    except Exception:
        file_storage_service.delete_file(path)
        logger.warning(f"Removed orphaned {kind} upload for booking {booking_id}")
        raise


@router.post("/{booking_id}/technician/selfie")
async def upload_selfie(
    booking_id: int,
    selfie: UploadFile = File(...),
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    booking = await _store_evidence(db, booking_id, current_user, "selfie", selfie)
    return success_response("Selfie uploaded successfully", serialize_booking(booking, include_history=False))


@router.post("/{booking_id}/before-image")
async def upload_before_image(
    booking_id: int,
    before_image: UploadFile = File(..., alias="beforeImage"),
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    booking = await _store_evidence(db, booking_id, current_user, "before_image", before_image)
    return success_response("Before image uploaded successfully", serialize_booking(booking, include_history=False))


@router.post("/{booking_id}/after-image")
async def upload_after_image(
    booking_id: int,
    after_image: UploadFile = File(..., alias="afterImage"),
    current_user: User = Depends(get_current_technician_user),
    db: Session = Depends(get_db)
):
    booking = await _store_evidence(db, booking_id, current_user, "after_image", after_image)
    return success_response("After image uploaded successfully", serialize_booking(booking, include_history=False))


# ============ BULK (client-scoped path) ============

@router.post("/{client_id}/bulk", status_code=status.HTTP_201_CREATED)
async def create_bulk_booking_for_client(
    client_id: int,
    payload: BulkBookingCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Bulk creation addressed by client id; ``clientId`` in the body must match if sent"""
    if payload.client_id is not None and payload.client_id != client_id:
        raise ValidationError("clientId in the body does not match the path")
    return create_bulk_booking_for(db, current_user, client_id, payload)
