"""
Arrival verification

The technician marks arrival, asks for a code, and the customer reads the
code to them. Verifying it is the only way a booking enters ``in_progress``.

Attempt policy: ``OTP_MAX_ATTEMPTS`` is the total number of submissions a
code accepts. Each submission first claims an attempt with a conditional
UPDATE (``attempts < max``), then compares. With the default of 3, two wrong
codes followed by the right one succeed; after three wrong ones the code is
locked and even the right value fails with ``CodeLocked``.
"""
import logging
import secrets
import string
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from gorepair.config import settings
from gorepair.db.session import retry_on_disconnect
from gorepair.exceptions import (
    CodeLocked, Conflict, Forbidden, InvalidCode, InvalidTransition, NotFound, ValidationError
)
from gorepair.models.booking import Booking, BookingStatus
from gorepair.models.otp import BookingOTP
from gorepair.models.user import User
from gorepair.services.ledger import BookingLedger

logger = logging.getLogger(__name__)


def generate_numeric_code(length: int) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))


class VerificationGate:
    def __init__(self, db: Session, ledger: Optional[BookingLedger] = None):
        self.db = db
        self.ledger = ledger or BookingLedger(db)

    def _active_codes(self, booking_id: int, technician_id: int, now: datetime):
        return self.db.query(BookingOTP).filter(
            BookingOTP.booking_id == booking_id,
            BookingOTP.technician_id == technician_id,
            BookingOTP.is_used.is_(False),
            BookingOTP.expires_at > now
        )

    @retry_on_disconnect
    def mark_reached(self, booking: Booking, technician: User) -> Booking:
        """Assigned technician reports physical arrival"""
        self.ledger.ensure_assigned_technician(booking, technician)
        if booking.status not in (BookingStatus.ASSIGNED, BookingStatus.CONFIRMED):
            raise InvalidTransition(booking.status, BookingStatus.REACHED)

        self.ledger.transition(
            booking, BookingStatus.REACHED, technician,
            note="Technician reached location",
            metadata={"reached_at": datetime.utcnow().isoformat()}
        )
        self.db.commit()
        self.db.refresh(booking)
        return booking

    @retry_on_disconnect
    def generate_code(self, booking: Booking, technician: User, now: Optional[datetime] = None) -> BookingOTP:
        """Issue a fresh code for (booking, technician), retiring any active one"""
        now = now or datetime.utcnow()
        self.ledger.ensure_assigned_technician(booking, technician)
        if booking.status not in (BookingStatus.REACHED, BookingStatus.OTP_PENDING):
            raise InvalidTransition(booking.status, BookingStatus.OTP_PENDING)

        retired = self._active_codes(booking.id, technician.id, now).update(
            {BookingOTP.expires_at: now}, synchronize_session="fetch"
        )

        otp = BookingOTP(
            booking_id=booking.id,
            technician_id=technician.id,
            code=generate_numeric_code(settings.OTP_LENGTH),
            expires_at=now + timedelta(minutes=settings.OTP_TTL_MINUTES),
            is_used=False,
            attempts=0,
            created_at=now
        )
        self.db.add(otp)

        self.ledger.transition(
            booking, BookingStatus.OTP_PENDING, technician,
            note="OTP generated",
            metadata={"expires_at": otp.expires_at.isoformat(), "replaced_codes": retired}
        )
        self.db.commit()
        self.db.refresh(otp)

        logger.info(f"OTP issued for booking {booking.booking_number} (retired {retired} active code(s))")
        return otp

    @retry_on_disconnect
    def verify_code(
        self,
        booking: Booking,
        technician: User,
        submitted_code: str,
        now: Optional[datetime] = None
    ) -> Booking:
        now = now or datetime.utcnow()
        self.ledger.ensure_assigned_technician(booking, technician)
        if booking.status != BookingStatus.OTP_PENDING:
            raise InvalidTransition(booking.status, BookingStatus.IN_PROGRESS)

        otp = self._active_codes(booking.id, technician.id, now).order_by(
            BookingOTP.created_at.desc(), BookingOTP.id.desc()
        ).first()
        if otp is None:
            raise ValidationError("OTP expired or not found. Please generate a new OTP")

        claimed = self.db.query(BookingOTP).filter(
            BookingOTP.id == otp.id,
            BookingOTP.attempts < settings.OTP_MAX_ATTEMPTS
        ).update({BookingOTP.attempts: BookingOTP.attempts + 1}, synchronize_session="fetch")

        if claimed == 0:
            self.db.rollback()
            logger.warning(f"Locked OTP submitted for booking {booking.booking_number}")
            raise CodeLocked()

        self.db.refresh(otp)
        if not secrets.compare_digest(otp.code, str(submitted_code).strip()):
            remaining = max(settings.OTP_MAX_ATTEMPTS - otp.attempts, 0)
            # The spent attempt must survive the failure
            self.db.commit()
            logger.warning(
                f"Wrong OTP for booking {booking.booking_number}, {remaining} attempt(s) remaining"
            )
            raise InvalidCode(remaining)

        used = self.db.query(BookingOTP).filter(
            BookingOTP.id == otp.id,
            BookingOTP.is_used.is_(False)
        ).update({BookingOTP.is_used: True, BookingOTP.used_at: now}, synchronize_session="fetch")
        if used == 0:
            self.db.rollback()
            raise Conflict("OTP has already been used")

        self.ledger.transition(
            booking, BookingStatus.IN_PROGRESS, technician,
            note="OTP verified, work started",
            metadata={"verified_at": now.isoformat()}
        )
        self.db.commit()
        self.db.refresh(booking)

        logger.info(f"OTP verified for booking {booking.booking_number}")
        return booking

    def get_active_code(self, booking: Booking, user: User, now: Optional[datetime] = None) -> BookingOTP:
        """The customer's copy of the current code"""
        now = now or datetime.utcnow()
        if booking.user_id != user.id:
            raise Forbidden("Only the booking owner can view the OTP")
        if booking.assigned_technician_id is None:
            raise NotFound("No active OTP for this booking")

        otp = self._active_codes(booking.id, booking.assigned_technician_id, now).order_by(
            BookingOTP.created_at.desc(), BookingOTP.id.desc()
        ).first()
        if otp is None or otp.attempts >= settings.OTP_MAX_ATTEMPTS:
            raise NotFound("No active OTP for this booking")
        return otp
