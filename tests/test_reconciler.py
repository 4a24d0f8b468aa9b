"""Tests for parts reconciliation during a job."""

from decimal import Decimal

import pytest

from gorepair.exceptions import Forbidden, InvalidTransition, NotFound, ValidationError
from gorepair.models.booking import BookingStatus
from gorepair.services.reconciler import PartsReconciler


@pytest.fixture
def technician(make_technician):
    return make_technician(workload=1)


@pytest.fixture
def job(customer, technician, make_booking, set_status):
    return set_status(make_booking(customer), BookingStatus.IN_PROGRESS, technician)


@pytest.fixture
def part(make_part):
    return make_part(price=50)


@pytest.fixture
def reconciler(db):
    return PartsReconciler(db)


class TestAddParts:
    def test_parts_are_added_to_final_amount(self, reconciler, job, technician, part):
        assert job.final_amount == Decimal("500.00")

        booking = reconciler.add_parts(job, technician, [{"part_id": part.id, "quantity": 2}])

        assert booking.parts_amount == Decimal("100.00")
        assert booking.final_amount == Decimal("600.00")
        assert booking.parts == [{
            "part_id": part.id,
            "sku": part.sku,
            "name": part.name,
            "price": 50.0,
            "quantity": 2,
        }]

    def test_same_part_is_merged(self, reconciler, job, technician, part):
        reconciler.add_parts(job, technician, [{"part_id": part.id, "quantity": 2}])
        booking = reconciler.add_parts(job, technician, [{"part_id": part.id, "quantity": 1}])

        assert len(booking.parts) == 1
        assert booking.parts[0]["quantity"] == 3
        assert booking.final_amount == Decimal("650.00")

    def test_history_entry_keeps_status(self, reconciler, job, technician, part):
        booking = reconciler.add_parts(job, technician, [{"part_id": part.id, "quantity": 1}])

        entry = booking.status_history[-1]
        assert entry.status == BookingStatus.IN_PROGRESS
        assert entry.details["type"] == "parts_added"
        assert entry.details["parts"] == [{"part_id": part.id, "quantity": 1}]

    def test_unknown_part(self, reconciler, job, technician):
        with pytest.raises(NotFound):
            reconciler.add_parts(job, technician, [{"part_id": 404, "quantity": 1}])

    def test_zero_quantity(self, reconciler, job, technician, part):
        with pytest.raises(ValidationError):
            reconciler.add_parts(job, technician, [{"part_id": part.id, "quantity": 0}])

    def test_only_while_in_progress(self, reconciler, customer, technician, make_booking, set_status, part):
        booking = set_status(make_booking(customer), BookingStatus.REACHED, technician)
        with pytest.raises(InvalidTransition, match="in progress"):
            reconciler.add_parts(booking, technician, [{"part_id": part.id}])

    def test_only_assigned_technician(self, reconciler, job, make_technician, part):
        with pytest.raises(Forbidden):
            reconciler.add_parts(job, make_technician(), [{"part_id": part.id}])


class TestRemovePart:
    def test_partial_removal(self, reconciler, job, technician, part):
        reconciler.add_parts(job, technician, [{"part_id": part.id, "quantity": 3}])

        booking = reconciler.remove_part(job, technician, part.id, quantity=1)

        assert booking.parts[0]["quantity"] == 2
        assert booking.final_amount == Decimal("600.00")
        assert booking.status_history[-1].details["type"] == "parts_removed"

    def test_full_removal_drops_line(self, reconciler, job, technician, part):
        reconciler.add_parts(job, technician, [{"part_id": part.id, "quantity": 2}])

        booking = reconciler.remove_part(job, technician, part.id)

        assert booking.parts == []
        assert booking.parts_amount == Decimal("0.00")
        assert booking.final_amount == Decimal("500.00")

    def test_part_not_on_booking(self, reconciler, job, technician, part):
        with pytest.raises(NotFound):
            reconciler.remove_part(job, technician, part.id)
