"""Tests for technician availability evaluation."""

from datetime import datetime

import pytest

from gorepair.models.technician import TechnicianProfile
from gorepair.services.availability import AvailabilityEvaluator, parse_minutes

# 2026-10-19 is a Monday
MONDAY_10AM = datetime(2026, 10, 19, 10, 0)


def make_profile(**overrides) -> TechnicianProfile:
    fields = dict(
        user_id=1,
        working_hours={"monday": {"start": "09:00", "end": "18:00", "available": True}},
        is_on_break=False,
        break_start=None,
        break_end=None,
        current_workload=0,
        max_workload=5,
    )
    fields.update(overrides)
    return TechnicianProfile(**fields)


@pytest.fixture
def evaluator():
    return AvailabilityEvaluator("UTC")


class TestParseMinutes:
    def test_parses_hours_and_minutes(self):
        assert parse_minutes("09:30") == 570

    def test_end_of_day_is_allowed(self):
        assert parse_minutes("24:00") == 1440

    @pytest.mark.parametrize("value", ["25:00", "10:60", "noon", "24:30"])
    def test_rejects_invalid_times(self, value):
        with pytest.raises(ValueError):
            parse_minutes(value)


class TestShiftWindow:
    def test_inside_window(self, evaluator):
        assert evaluator.is_on_shift(make_profile(), MONDAY_10AM)

    def test_start_is_inclusive(self, evaluator):
        assert evaluator.is_on_shift(make_profile(), MONDAY_10AM.replace(hour=9))

    def test_end_is_exclusive(self, evaluator):
        assert not evaluator.is_on_shift(make_profile(), MONDAY_10AM.replace(hour=18))

    def test_day_without_hours(self, evaluator):
        # Tuesday is not configured
        assert not evaluator.is_on_shift(make_profile(), datetime(2026, 10, 20, 10, 0))

    def test_day_marked_unavailable(self, evaluator):
        profile = make_profile(working_hours={"monday": {"start": "09:00", "end": "18:00", "available": False}})
        assert not evaluator.is_on_shift(profile, MONDAY_10AM)

    def test_overnight_window(self, evaluator):
        profile = make_profile(working_hours={"monday": {"start": "22:00", "end": "06:00", "available": True}})
        assert evaluator.is_on_shift(profile, MONDAY_10AM.replace(hour=23))
        assert not evaluator.is_on_shift(profile, MONDAY_10AM)

    def test_overnight_tail_belongs_to_the_previous_day(self, evaluator):
        profile = make_profile(working_hours={"monday": {"start": "22:00", "end": "06:00", "available": True}})
        tuesday_2am = datetime(2026, 10, 20, 2, 0)

        assert evaluator.is_on_shift(profile, tuesday_2am)
        assert not evaluator.is_on_shift(profile, tuesday_2am.replace(hour=6))
        # Monday 02:00 is the tail of Sunday night, which is not worked
        assert not evaluator.is_on_shift(profile, MONDAY_10AM.replace(hour=2))

    def test_overnight_tail_from_sunday_wraps_to_monday(self, evaluator):
        profile = make_profile(working_hours={"sunday": {"start": "21:00", "end": "03:00", "available": True}})
        assert evaluator.is_on_shift(profile, MONDAY_10AM.replace(hour=1))
        assert not evaluator.is_on_shift(profile, MONDAY_10AM.replace(hour=3))

    def test_unavailable_previous_day_has_no_tail(self, evaluator):
        profile = make_profile(working_hours={
            "monday": {"start": "22:00", "end": "06:00", "available": False},
            "tuesday": {"start": "09:00", "end": "18:00", "available": True},
        })
        assert not evaluator.is_on_shift(profile, datetime(2026, 10, 20, 2, 0))
        assert evaluator.is_on_shift(profile, datetime(2026, 10, 20, 9, 0))

    def test_malformed_hours_count_as_off_shift(self, evaluator):
        profile = make_profile(working_hours={"monday": {"start": "9am", "end": "6pm", "available": True}})
        assert not evaluator.is_on_shift(profile, MONDAY_10AM)


class TestBreaksAndCapacity:
    def test_break_flag(self, evaluator):
        assert evaluator.is_on_break(make_profile(is_on_break=True), MONDAY_10AM)

    def test_break_window(self, evaluator):
        profile = make_profile(
            break_start=MONDAY_10AM.replace(hour=9, minute=45),
            break_end=MONDAY_10AM.replace(hour=10, minute=15),
        )
        assert evaluator.is_on_break(profile, MONDAY_10AM)
        assert not evaluator.is_on_break(profile, MONDAY_10AM.replace(hour=11))

    def test_full_technician_is_not_eligible(self, evaluator):
        assert not evaluator.is_eligible(make_profile(current_workload=5), MONDAY_10AM)

    def test_eligible_when_on_shift_off_break_and_under_capacity(self, evaluator):
        assert evaluator.is_eligible(make_profile(current_workload=4), MONDAY_10AM)
