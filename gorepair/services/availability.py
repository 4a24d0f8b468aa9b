"""Technician availability at a given instant"""
import logging
from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from gorepair.config import settings
from gorepair.models.technician import TechnicianProfile, WEEKDAYS

logger = logging.getLogger(__name__)


def parse_minutes(value: str) -> int:
    """'HH:MM' -> minutes since midnight"""
    hours, minutes = value.strip().split(":")
    hours, minutes = int(hours), int(minutes)
    if not (0 <= hours <= 24 and 0 <= minutes < 60) or hours * 60 + minutes > 24 * 60:
        raise ValueError(f"Invalid time of day: {value}")
    return hours * 60 + minutes


def _zone(name: str) -> tzinfo:
    return timezone.utc if name.upper() == "UTC" else ZoneInfo(name)


class AvailabilityEvaluator:
    """
    Decides whether a technician can take an automatic assignment now.

    Working hours are written in ``SERVICE_TIMEZONE`` as weekday windows
    ``[start, end)`` compared at minute resolution. Instants are naive UTC,
    like every timestamp the service stores.
    """

    def __init__(self, timezone_name: Optional[str] = None):
        self.zone = _zone(timezone_name or settings.SERVICE_TIMEZONE)

    def local_time(self, instant: datetime) -> datetime:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self.zone)

    def _window(self, profile: TechnicianProfile, weekday: int) -> Optional[tuple]:
        window = (profile.working_hours or {}).get(WEEKDAYS[weekday])
        if not window or not window.get("available"):
            return None
        try:
            return parse_minutes(window["start"]), parse_minutes(window["end"])
        except (KeyError, ValueError, AttributeError) as e:
            logger.warning(f"Technician {profile.user_id} has malformed working hours: {e}")
            return None

    def is_on_shift(self, profile: TechnicianProfile, instant: datetime) -> bool:
        local = self.local_time(instant)
        minute = local.hour * 60 + local.minute

        today = self._window(profile, local.weekday())
        if today:
            start, end = today
            if start <= end and start <= minute < end:
                return True
            # Window runs past midnight, e.g. 22:00-06:00; only its evening part is today
            if start > end and minute >= start:
                return True

        # Early-morning tail of the previous day's overnight window
        previous = self._window(profile, (local.weekday() - 1) % 7)
        if previous:
            start, end = previous
            if start > end and minute < end:
                return True
        return False

    @staticmethod
    def is_on_break(profile: TechnicianProfile, instant: datetime) -> bool:
        if profile.is_on_break:
            return True
        if profile.break_start and profile.break_end:
            moment = instant.astimezone(timezone.utc).replace(tzinfo=None) if instant.tzinfo else instant
            return profile.break_start <= moment < profile.break_end
        return False

    @staticmethod
    def is_under_capacity(profile: TechnicianProfile) -> bool:
        return profile.current_workload < profile.max_workload

    def is_eligible(self, profile: TechnicianProfile, instant: Optional[datetime] = None) -> bool:
        instant = instant or datetime.utcnow()
        return (
            self.is_on_shift(profile, instant)
            and not self.is_on_break(profile, instant)
            and self.is_under_capacity(profile)
        )


# Create global instance
availability_evaluator = AvailabilityEvaluator()
