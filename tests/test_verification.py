"""Tests for arrival marking and OTP verification."""

from datetime import datetime, timedelta

import pytest

from gorepair.config import settings
from gorepair.exceptions import CodeLocked, Forbidden, InvalidCode, InvalidTransition, NotFound, ValidationError
from gorepair.models.booking import BookingStatus
from gorepair.models.otp import BookingOTP
from gorepair.services.ledger import BookingLedger
from gorepair.services.verification import VerificationGate


def wrong_code(otp: BookingOTP) -> str:
    return "000000" if otp.code != "000000" else "111111"


@pytest.fixture
def technician(make_technician):
    return make_technician()


@pytest.fixture
def assigned_booking(customer, admin, technician, make_booking, hold):
    return hold(make_booking(customer), technician, admin)


@pytest.fixture
def gate(db):
    return VerificationGate(db)


@pytest.fixture
def pending_code(db, gate, assigned_booking, technician):
    gate.mark_reached(assigned_booking, technician)
    return gate.generate_code(assigned_booking, technician)


class TestArrival:
    def test_reached_from_assigned(self, gate, assigned_booking, technician):
        booking = gate.mark_reached(assigned_booking, technician)
        assert booking.status == BookingStatus.REACHED
        assert "reached_at" in booking.status_history[-1].details

    def test_reached_twice_is_rejected(self, gate, assigned_booking, technician):
        gate.mark_reached(assigned_booking, technician)
        with pytest.raises(InvalidTransition):
            gate.mark_reached(assigned_booking, technician)

    def test_only_assigned_technician_can_mark_arrival(self, gate, assigned_booking, make_technician):
        with pytest.raises(Forbidden):
            gate.mark_reached(assigned_booking, make_technician())


class TestCodeGeneration:
    def test_code_moves_booking_to_otp_pending(self, pending_code, assigned_booking):
        assert assigned_booking.status == BookingStatus.OTP_PENDING
        assert len(pending_code.code) == settings.OTP_LENGTH
        assert pending_code.code.isdigit()
        assert pending_code.attempts == 0

    def test_code_expires_after_ttl(self, pending_code):
        assert pending_code.expires_at - pending_code.created_at == timedelta(minutes=settings.OTP_TTL_MINUTES)

    def test_cannot_generate_before_arrival(self, gate, assigned_booking, technician):
        with pytest.raises(InvalidTransition):
            gate.generate_code(assigned_booking, technician)

    def test_regenerating_retires_previous_code(self, db, gate, pending_code, assigned_booking, technician):
        second = gate.generate_code(assigned_booking, technician)

        now = datetime.utcnow()
        active = db.query(BookingOTP).filter(
            BookingOTP.booking_id == assigned_booking.id,
            BookingOTP.is_used.is_(False),
            BookingOTP.expires_at > now
        ).all()
        assert [o.id for o in active] == [second.id]

        booking = gate.verify_code(assigned_booking, technician, second.code)
        assert booking.status == BookingStatus.IN_PROGRESS


class TestVerification:
    def test_correct_code_starts_work(self, db, gate, pending_code, assigned_booking, technician):
        booking = gate.verify_code(assigned_booking, technician, pending_code.code)

        assert booking.status == BookingStatus.IN_PROGRESS
        db.refresh(pending_code)
        assert pending_code.is_used
        assert pending_code.used_at is not None

    def test_two_wrong_then_correct_succeeds(self, gate, pending_code, assigned_booking, technician):
        for remaining in (2, 1):
            with pytest.raises(InvalidCode) as exc_info:
                gate.verify_code(assigned_booking, technician, wrong_code(pending_code))
            assert exc_info.value.data == {"remaining_attempts": remaining}

        booking = gate.verify_code(assigned_booking, technician, pending_code.code)
        assert booking.status == BookingStatus.IN_PROGRESS

    def test_three_wrong_locks_the_code(self, db, gate, pending_code, assigned_booking, technician):
        for _ in range(settings.OTP_MAX_ATTEMPTS):
            with pytest.raises(InvalidCode):
                gate.verify_code(assigned_booking, technician, wrong_code(pending_code))

        with pytest.raises(CodeLocked):
            gate.verify_code(assigned_booking, technician, pending_code.code)

        db.refresh(assigned_booking)
        db.refresh(pending_code)
        assert assigned_booking.status == BookingStatus.OTP_PENDING
        assert pending_code.attempts == settings.OTP_MAX_ATTEMPTS
        assert not pending_code.is_used

    def test_expired_code_is_rejected(self, db, gate, assigned_booking, technician):
        issued_at = datetime.utcnow()
        gate.mark_reached(assigned_booking, technician)
        otp = gate.generate_code(assigned_booking, technician, now=issued_at)

        later = issued_at + timedelta(minutes=settings.OTP_TTL_MINUTES, seconds=1)
        with pytest.raises(ValidationError, match="expired"):
            gate.verify_code(assigned_booking, technician, otp.code, now=later)

    def test_verify_requires_otp_pending(self, gate, assigned_booking, technician):
        with pytest.raises(InvalidTransition):
            gate.verify_code(assigned_booking, technician, "123456")

    def test_other_technician_cannot_verify(self, gate, pending_code, assigned_booking, make_technician):
        with pytest.raises(Forbidden):
            gate.verify_code(assigned_booking, make_technician(), pending_code.code)


class TestCustomerCopy:
    def test_owner_sees_active_code(self, gate, pending_code, assigned_booking, customer):
        assert gate.get_active_code(assigned_booking, customer).code == pending_code.code

    def test_technician_cannot_read_code(self, gate, pending_code, assigned_booking, technician):
        with pytest.raises(Forbidden):
            gate.get_active_code(assigned_booking, technician)

    def test_no_code_before_generation(self, gate, assigned_booking, customer):
        with pytest.raises(NotFound):
            gate.get_active_code(assigned_booking, customer)

    def test_cancellation_expires_code(self, db, gate, pending_code, assigned_booking, customer):
        BookingLedger(db).cancel(assigned_booking, customer, "Technician was late")

        with pytest.raises(NotFound):
            gate.get_active_code(assigned_booking, customer)
