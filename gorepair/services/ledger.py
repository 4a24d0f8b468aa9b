"""
Booking ledger

Owns booking records, their append-only status history and the technician
capacity counters that move with them. Every public operation is one unit of
work: the status change, the history entry and the side effects it implies
(workload release, OTP expiry, bulk summary) are committed together, and the
booking's ``version`` column turns a concurrent edit into ``StaleDataError``.
"""
import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from gorepair.config import settings
from gorepair.db.session import retry_on_disconnect
from gorepair.exceptions import (
    Conflict, Forbidden, InvalidTransition, NotFound, ValidationError
)
from gorepair.models.booking import Booking, BookingStatus, BookingStatusHistory, PaymentMethod
from gorepair.models.catalog import Service
from gorepair.models.otp import BookingOTP
from gorepair.models.technician import TechnicianProfile
from gorepair.models.user import User

logger = logging.getLogger(__name__)

S = BookingStatus

TRANSITIONS: Dict[BookingStatus, frozenset] = {
    S.PENDING: frozenset({S.CONFIRMED, S.ASSIGNED, S.CANCELLED, S.REJECTED, S.RESCHEDULED}),
    S.CONFIRMED: frozenset({S.ASSIGNED, S.REACHED, S.CANCELLED, S.REJECTED, S.RESCHEDULED}),
    S.ASSIGNED: frozenset({S.ASSIGNED, S.CONFIRMED, S.REACHED, S.PENDING, S.CANCELLED, S.REJECTED, S.RESCHEDULED}),
    S.REACHED: frozenset({S.OTP_PENDING, S.CANCELLED}),
    S.OTP_PENDING: frozenset({S.OTP_PENDING, S.IN_PROGRESS, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.CANCELLED}),
    S.RESCHEDULED: frozenset({S.PENDING, S.CONFIRMED, S.ASSIGNED, S.CANCELLED}),
    S.REJECTED: frozenset({S.PENDING, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED})

# Statuses during which the assigned technician holds one unit of workload
HOLDING_STATUSES = frozenset({S.ASSIGNED, S.CONFIRMED, S.REACHED, S.OTP_PENDING, S.IN_PROGRESS})

# Reached only through their own operation, never through update_status
DEDICATED_STATUSES = frozenset({S.ASSIGNED, S.REACHED, S.OTP_PENDING, S.IN_PROGRESS, S.RESCHEDULED})

RESCHEDULABLE_STATUSES = frozenset({S.PENDING, S.CONFIRMED, S.ASSIGNED})


def to_money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


def required_skills(booking: Booking) -> set:
    """Union of the skills every booked service requires"""
    skills = set()
    for line in booking.services or []:
        skills.update(line.get("skills_required") or [])
    return skills


def booking_categories(booking: Booking) -> set:
    return {line.get("category") for line in booking.services or [] if line.get("category")}


def generate_booking_number(prefix: str = "BK") -> str:
    return f"{prefix}-{secrets.token_hex(4).upper()}"


class BookingLedger:
    """State machine and write path for bookings"""

    def __init__(self, db: Session):
        self.db = db

    # ============ LOOKUPS ============

    def get_booking(self, booking_id: int) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFound("Booking not found")
        return booking

    @staticmethod
    def ensure_can_view(booking: Booking, user: User) -> None:
        if user.is_staff or booking.user_id == user.id or booking.assigned_technician_id == user.id:
            return
        raise Forbidden("You do not have access to this booking")

    @staticmethod
    def ensure_owner_or_staff(booking: Booking, user: User) -> None:
        if user.is_staff or booking.user_id == user.id:
            return
        raise Forbidden("Only the booking owner or staff can perform this action")

    @staticmethod
    def ensure_assigned_technician(booking: Booking, user: User) -> None:
        if booking.assigned_technician_id is None or booking.assigned_technician_id != user.id:
            raise Forbidden("Only the assigned technician can perform this action")

    # ============ HISTORY ============

    @staticmethod
    def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
        return target in TRANSITIONS.get(current, frozenset())

    def ensure_transition(self, booking: Booking, target: BookingStatus) -> None:
        if not self.can_transition(booking.status, target):
            raise InvalidTransition(booking.status, target)

    def _append_history(
        self,
        booking: Booking,
        status: BookingStatus,
        actor: Optional[User],
        note: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> BookingStatusHistory:
        entry = BookingStatusHistory(
            sequence=len(booking.status_history) + 1,
            status=status,
            changed_at=datetime.utcnow(),
            changed_by_id=actor.id if actor else None,
            note=note,
            details=metadata
        )
        booking.status_history.append(entry)
        return entry

    def transition(
        self,
        booking: Booking,
        target: BookingStatus,
        actor: Optional[User],
        note: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> BookingStatusHistory:
        """
        Move ``booking`` to ``target`` and append the matching history entry.

        Nothing is flushed here; the caller commits the transition together
        with the rest of its mutation.
        """
        self.ensure_transition(booking, target)
        previous = booking.status
        entry = self._append_history(booking, target, actor, note, metadata)
        booking.status = target
        # Bumps the version even when nothing else on the row changes
        booking.updated_at = entry.changed_at
        logger.info(
            f"Booking {booking.booking_number}: {previous.value} -> {target.value}"
            f" by {actor.id if actor else 'system'}"
        )
        return entry

    def record(
        self,
        booking: Booking,
        actor: Optional[User],
        note: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> BookingStatusHistory:
        """Append an entry that keeps the current status (e.g. parts changes)"""
        entry = self._append_history(booking, booking.status, actor, note, metadata)
        booking.updated_at = entry.changed_at
        return entry

    # ============ AMOUNTS ============

    @staticmethod
    def recompute_amounts(booking: Booking) -> Decimal:
        """Recompute ``parts_amount`` and ``final_amount`` from the line items"""
        total = sum((to_money(s["price"]) * int(s.get("quantity", 1)) for s in booking.services or []), Decimal("0"))
        parts = sum((to_money(p["price"]) * int(p.get("quantity", 1)) for p in booking.parts or []), Decimal("0"))
        discount = to_money(booking.discount_amount)

        final = total + parts - discount
        if final < 0:
            raise ValidationError("Discount cannot exceed the booking amount")

        booking.total_amount = to_money(total)
        booking.parts_amount = to_money(parts)
        booking.final_amount = to_money(final)
        return booking.final_amount

    # ============ CAPACITY ============

    def reserve_capacity(self, technician_id: int) -> bool:
        """
        Take one unit of a technician's workload if it is below the ceiling.

        The check and the increment are the same UPDATE statement, so two
        concurrent reservations can never both pass a full technician.
        """
        rows = self.db.query(TechnicianProfile).filter(
            TechnicianProfile.user_id == technician_id,
            TechnicianProfile.current_workload < TechnicianProfile.max_workload
        ).update({
            TechnicianProfile.current_workload: TechnicianProfile.current_workload + 1,
            TechnicianProfile.is_available: (TechnicianProfile.current_workload + 1) < TechnicianProfile.max_workload
        }, synchronize_session="fetch")
        return rows == 1

    def force_reserve_capacity(self, technician_id: int) -> None:
        """Unconditional increment, used only for forced manual assignment"""
        self.db.query(TechnicianProfile).filter(
            TechnicianProfile.user_id == technician_id
        ).update({
            TechnicianProfile.current_workload: TechnicianProfile.current_workload + 1,
            TechnicianProfile.is_available: (TechnicianProfile.current_workload + 1) < TechnicianProfile.max_workload
        }, synchronize_session="fetch")

    def release_capacity(self, technician_id: int) -> bool:
        rows = self.db.query(TechnicianProfile).filter(
            TechnicianProfile.user_id == technician_id,
            TechnicianProfile.current_workload > 0
        ).update({
            TechnicianProfile.current_workload: TechnicianProfile.current_workload - 1,
            TechnicianProfile.is_available: (TechnicianProfile.current_workload - 1) < TechnicianProfile.max_workload
        }, synchronize_session="fetch")
        if rows == 0:
            logger.warning(f"Workload for technician {technician_id} already at zero, nothing released")
        return rows == 1

    @staticmethod
    def holds_capacity(booking: Booking) -> bool:
        return booking.assigned_technician_id is not None and booking.status in HOLDING_STATUSES

    def _release_hold(self, booking: Booking, unassign: bool) -> Optional[int]:
        """Give back the technician's workload unit; optionally drop the technician"""
        technician_id = booking.assigned_technician_id
        if technician_id is None:
            return None
        if booking.status in HOLDING_STATUSES:
            self.release_capacity(technician_id)
        if unassign:
            booking.assigned_technician_id = None
            self._sync_bulk_unassignment(booking, technician_id)
        return technician_id

    # ============ SIDE EFFECTS ============

    def expire_codes(self, booking_id: int, now: Optional[datetime] = None) -> int:
        """Invalidate every still-active OTP of a booking"""
        now = now or datetime.utcnow()
        return self.db.query(BookingOTP).filter(
            BookingOTP.booking_id == booking_id,
            BookingOTP.is_used.is_(False),
            BookingOTP.expires_at > now
        ).update({BookingOTP.expires_at: now}, synchronize_session="fetch")

    def _refresh_bulk(self, booking: Booking, actor: Optional[User]) -> None:
        if booking.bulk_booking_id is None:
            return
        from gorepair.services.bulk_booking import BulkOrchestrator
        BulkOrchestrator(self.db, ledger=self).recompute_status(booking.bulk_booking, actor)

    def _sync_bulk_unassignment(self, booking: Booking, technician_id: int) -> None:
        if booking.bulk_booking_id is None:
            return
        from gorepair.services.bulk_booking import BulkOrchestrator
        BulkOrchestrator(self.db, ledger=self).record_unassignment(booking.bulk_booking, booking, technician_id)

    # ============ CREATION ============

    def _snapshot_services(self, requested: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        requested = list(requested)
        if not requested:
            raise ValidationError("At least one service is required")

        service_ids = {int(item["service_id"]) for item in requested}
        catalog = {
            s.id: s for s in self.db.query(Service).filter(
                Service.id.in_(service_ids),
                Service.is_active.is_(True)
            ).all()
        }

        lines = []
        for item in requested:
            service = catalog.get(int(item["service_id"]))
            if service is None:
                raise ValidationError(f"Service {item['service_id']} not found or inactive")
            quantity = int(1 if item.get("quantity") is None else item["quantity"])
            if quantity < 1:
                raise ValidationError("Service quantity must be at least 1")
            lines.append({
                "service_id": service.id,
                "name": service.name,
                "category": service.category,
                "price": float(service.price),
                "quantity": quantity,
                "estimated_duration": service.estimated_duration,
                "skills_required": list(service.skills_required or []),
            })
        return lines

    def build_booking(
        self,
        customer: User,
        services: Iterable[Dict[str, Any]],
        address: Dict[str, Any],
        schedule_date: datetime,
        preferred_time_slot: Dict[str, str],
        actor: Optional[User] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        discount_coupon: Optional[str] = None,
        discount_amount: Any = 0,
        notes: Optional[str] = None,
        note: str = "Booking created"
    ) -> Booking:
        """Add a new pending booking to the session and flush it (no commit)"""
        booking = Booking(
            booking_number=generate_booking_number(),
            user_id=customer.id,
            services=self._snapshot_services(services),
            parts=[],
            address=address,
            latitude=latitude,
            longitude=longitude,
            schedule_date=schedule_date,
            preferred_time_slot=preferred_time_slot,
            status=S.PENDING,
            declined_by=[],
            payment_method=payment_method,
            payment_status="pending",
            advance_payment={
                "amount": settings.DEFAULT_ADVANCE_PAYMENT,
                "status": "pending",
                "transaction_id": None,
                "payment_date": None,
            },
            discount_coupon=discount_coupon,
            discount_amount=to_money(discount_amount),
            notes=notes,
        )
        self.recompute_amounts(booking)
        self._append_history(booking, S.PENDING, actor or customer, note)

        self.db.add(booking)
        self.db.flush()
        return booking

    @retry_on_disconnect
    def create_booking(self, customer: User, **fields) -> Booking:
        booking = self.build_booking(customer, **fields)
        self.db.commit()
        self.db.refresh(booking)
        logger.info(f"Booking {booking.booking_number} created for user {customer.id}")
        return booking

    # ============ LIFECYCLE OPERATIONS ============

    @retry_on_disconnect
    def cancel(self, booking: Booking, actor: User, reason: Optional[str]) -> Booking:
        if not reason or not reason.strip():
            raise ValidationError("Cancellation reason is required")
        self.ensure_owner_or_staff(booking, actor)
        self.ensure_transition(booking, S.CANCELLED)

        self._release_hold(booking, unassign=False)
        self.expire_codes(booking.id)
        booking.cancellation_reason = reason.strip()
        self.transition(booking, S.CANCELLED, actor, note=reason.strip())
        self._refresh_bulk(booking, actor)

        self.db.commit()
        self.db.refresh(booking)
        return booking

    @retry_on_disconnect
    def reschedule(
        self,
        booking: Booking,
        actor: User,
        schedule_date: datetime,
        preferred_time_slot: Dict[str, str],
        reason: Optional[str] = None
    ) -> Booking:
        """
        Move the booking to a new slot.

        Records a ``rescheduled`` entry, then returns to the previous status.
        A booking holding a technician drops the technician and lands in
        ``confirmed`` instead.
        """
        self.ensure_owner_or_staff(booking, actor)
        if booking.status not in RESCHEDULABLE_STATUSES:
            raise InvalidTransition(booking.status, S.RESCHEDULED)

        previous_status = booking.status
        metadata = {
            "from": {
                "schedule_date": booking.schedule_date.isoformat() if booking.schedule_date else None,
                "preferred_time_slot": booking.preferred_time_slot,
            },
            "to": {
                "schedule_date": schedule_date.isoformat(),
                "preferred_time_slot": preferred_time_slot,
            },
        }

        self.transition(booking, S.RESCHEDULED, actor, note=reason or "Booking rescheduled", metadata=metadata)
        booking.schedule_date = schedule_date
        booking.preferred_time_slot = preferred_time_slot

        if booking.assigned_technician_id is not None:
            technician_id = booking.assigned_technician_id
            # Release against the status the hold was taken under
            self.release_capacity(technician_id)
            booking.assigned_technician_id = None
            self._sync_bulk_unassignment(booking, technician_id)
            self.transition(
                booking, S.CONFIRMED, actor,
                note="Technician unassigned after reschedule",
                metadata={"unassigned_technician_id": technician_id}
            )
        else:
            self.transition(booking, previous_status, actor, note="Restored after reschedule")

        self._refresh_bulk(booking, actor)
        self.db.commit()
        self.db.refresh(booking)
        return booking

    @retry_on_disconnect
    def accept(self, booking: Booking, technician: User) -> Booking:
        self.ensure_assigned_technician(booking, technician)
        if booking.status != S.ASSIGNED:
            raise InvalidTransition(booking.status, S.CONFIRMED)

        self.transition(booking, S.CONFIRMED, technician, note="Assignment accepted by technician")
        self.db.commit()
        self.db.refresh(booking)
        return booking

    @retry_on_disconnect
    def decline(self, booking: Booking, technician: User, reason: Optional[str] = None) -> Booking:
        """Technician rejects the assignment; the booking goes back to the pool"""
        self.ensure_assigned_technician(booking, technician)
        if booking.status != S.ASSIGNED:
            raise InvalidTransition(booking.status, S.PENDING)

        declined = list(booking.declined_by or [])
        if not any(d.get("technician_id") == technician.id for d in declined):
            declined.append({"technician_id": technician.id, "declined_at": datetime.utcnow().isoformat()})
        booking.declined_by = declined

        self._release_hold(booking, unassign=True)
        self.transition(
            booking, S.PENDING, technician,
            note=reason or "Assignment declined by technician",
            metadata={"declined_by": technician.id}
        )
        self._refresh_bulk(booking, technician)

        self.db.commit()
        self.db.refresh(booking)
        return booking

    @retry_on_disconnect
    def complete(self, booking: Booking, actor: User, note: Optional[str] = None) -> Booking:
        """Close a job in progress (assigned technician, or staff on their behalf)"""
        if not actor.is_staff:
            self.ensure_assigned_technician(booking, actor)
        self.ensure_transition(booking, S.COMPLETED)

        technician_id = self._release_hold(booking, unassign=False)
        if technician_id is not None:
            self.db.query(TechnicianProfile).filter(
                TechnicianProfile.user_id == technician_id
            ).update({
                TechnicianProfile.total_jobs_completed: TechnicianProfile.total_jobs_completed + 1
            }, synchronize_session="fetch")

        booking.completed_at = datetime.utcnow()
        self.transition(booking, S.COMPLETED, actor, note=note or "Job completed")
        self._refresh_bulk(booking, actor)

        self.db.commit()
        self.db.refresh(booking)
        return booking

    @retry_on_disconnect
    def submit_review(self, booking: Booking, user: User, rating: int, review: Optional[str] = None) -> Booking:
        if booking.user_id != user.id:
            raise Forbidden("Only the booking owner can review this booking")
        if booking.status != S.COMPLETED:
            raise ValidationError("Only completed bookings can be reviewed")
        if booking.rating is not None:
            raise Conflict("This booking has already been reviewed")
        if not 1 <= int(rating) <= 5:
            raise ValidationError("Rating must be between 1 and 5")

        booking.rating = int(rating)
        booking.review = review
        booking.review_date = datetime.utcnow()

        if booking.assigned_technician_id is not None:
            # Both right-hand sides read the pre-update row
            self.db.query(TechnicianProfile).filter(
                TechnicianProfile.user_id == booking.assigned_technician_id
            ).update({
                TechnicianProfile.average_rating:
                    (TechnicianProfile.average_rating * TechnicianProfile.total_ratings + int(rating))
                    / (TechnicianProfile.total_ratings + 1.0),
                TechnicianProfile.total_ratings: TechnicianProfile.total_ratings + 1
            }, synchronize_session="fetch")

        self.db.commit()
        self.db.refresh(booking)
        logger.info(f"Booking {booking.booking_number} reviewed with rating {rating}")
        return booking

    def update_status(self, booking: Booking, actor: User, target: BookingStatus, note: Optional[str] = None) -> Booking:
        """
        Generic status change, validated against the transition table.

        Statuses with side effects go through their own operation:
        cancellation and completion are delegated, the rest are refused.
        """
        if target in DEDICATED_STATUSES:
            raise ValidationError(f"Status '{target.value}' can only be set through its dedicated endpoint")
        if target == S.CANCELLED:
            return self.cancel(booking, actor, note)
        if target == S.COMPLETED:
            return self.complete(booking, actor, note)
        return self._apply_status(booking, actor, target, note)

    @retry_on_disconnect
    def _apply_status(self, booking: Booking, actor: User, target: BookingStatus, note: Optional[str]) -> Booking:
        self.ensure_transition(booking, target)
        if target in (S.PENDING, S.REJECTED):
            self._release_hold(booking, unassign=True)
        self.transition(booking, target, actor, note=note)
        self._refresh_bulk(booking, actor)

        self.db.commit()
        self.db.refresh(booking)
        return booking

    # ============ JOB EVIDENCE ============

    IMAGE_STATUSES = {
        "selfie": frozenset({S.ASSIGNED, S.CONFIRMED, S.REACHED, S.OTP_PENDING}),
        "before_image": frozenset({S.REACHED, S.OTP_PENDING, S.IN_PROGRESS}),
        "after_image": frozenset({S.IN_PROGRESS, S.COMPLETED}),
    }

    def ensure_can_attach(self, booking: Booking, technician: User, kind: str) -> None:
        self.ensure_assigned_technician(booking, technician)
        if booking.status not in self.IMAGE_STATUSES[kind]:
            raise ValidationError(
                f"Cannot upload {kind.replace('_', ' ')} while booking is {booking.status.value}"
            )

    @retry_on_disconnect
    def attach_image(self, booking: Booking, technician: User, kind: str, url: str) -> Booking:
        """Store an evidence URL; the status is left as it is"""
        self.ensure_can_attach(booking, technician, kind)
        setattr(booking, f"{kind}_url", url)
        setattr(booking, f"{kind}_uploaded_at", datetime.utcnow())
        self.db.commit()
        self.db.refresh(booking)
        return booking

    # ============ RECONCILIATION ============

    @retry_on_disconnect
    def sync_workload(self, technician_id: int) -> Dict[str, int]:
        """
        Rewrite a technician's workload counter from the bookings they hold.

        The recount and the write are a single UPDATE with a count subquery.
        The profile row is locked first, so the reported previous value is the
        one the UPDATE replaces.
        """
        profile = self.db.query(TechnicianProfile).filter(
            TechnicianProfile.user_id == technician_id
        ).with_for_update().populate_existing().first()
        if not profile:
            raise NotFound("Technician not found")
        previous = profile.current_workload

        held = self.db.query(func.count(Booking.id)).filter(
            Booking.assigned_technician_id == technician_id,
            Booking.status.in_(list(HOLDING_STATUSES))
        ).scalar_subquery()
        self.db.query(TechnicianProfile).filter(
            TechnicianProfile.user_id == technician_id
        ).update({
            TechnicianProfile.current_workload: held,
            TechnicianProfile.is_available: held < TechnicianProfile.max_workload
        }, synchronize_session=False)
        self.db.commit()
        self.db.refresh(profile)

        if previous != profile.current_workload:
            logger.warning(f"Technician {technician_id} workload corrected {previous} -> {profile.current_workload}")
        return {
            "previous_workload": previous,
            "current_workload": profile.current_workload,
            "max_workload": profile.max_workload,
        }
