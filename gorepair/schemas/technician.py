"""Technician availability schemas"""
from datetime import datetime
from typing import Dict, Optional

from pydantic import Field, field_validator, model_validator

from gorepair.models.technician import TechnicianProfile, WEEKDAYS
from gorepair.schemas.common import CamelModel, Coordinates
from gorepair.services.availability import parse_minutes


class DayWindow(CamelModel):
    start: str = Field(..., description="Shift start, HH:MM")
    end: str = Field(..., description="Shift end, HH:MM")
    available: bool = True

    @field_validator("start", "end")
    @classmethod
    def validate_time(cls, value: str) -> str:
        try:
            parse_minutes(value)
        except ValueError:
            raise ValueError("Time must be in HH:MM format")
        return value.strip()


class BreakWindow(CamelModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_order(self):
        if self.start >= self.end:
            raise ValueError("Break start must be before break end")
        return self


class AvailabilityUpdateRequest(CamelModel):
    """
    Typed availability update

    Only the fields present are applied; ``working_hours`` replaces the
    given weekdays and keeps the others.
    """
    working_hours: Optional[Dict[str, DayWindow]] = None
    is_on_break: Optional[bool] = None
    break_window: Optional[BreakWindow] = None
    clear_break_window: bool = False
    is_online: Optional[bool] = None
    location: Optional[Coordinates] = None

    @field_validator("working_hours")
    @classmethod
    def validate_weekdays(cls, value):
        if value is None:
            return value
        unknown = set(k.lower() for k in value) - set(WEEKDAYS)
        if unknown:
            raise ValueError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")
        return {k.lower(): v for k, v in value.items()}


def serialize_technician(profile: TechnicianProfile) -> dict:
    user = profile.user
    return {
        "id": profile.user_id,
        "full_name": user.full_name if user else None,
        "email": user.email if user else None,
        "phone": user.phone if user else None,
        "is_online": user.is_online if user else None,
        "latitude": user.latitude if user else None,
        "longitude": user.longitude if user else None,
        "status": profile.status.value,
        "skills": profile.skills,
        "services": profile.services,
        "working_hours": profile.working_hours,
        "is_on_break": profile.is_on_break,
        "break_start": profile.break_start.isoformat() if profile.break_start else None,
        "break_end": profile.break_end.isoformat() if profile.break_end else None,
        "current_workload": profile.current_workload,
        "max_workload": profile.max_workload,
        "is_available": profile.is_available,
        "average_rating": profile.average_rating,
        "total_ratings": profile.total_ratings,
        "total_jobs_completed": profile.total_jobs_completed,
    }
