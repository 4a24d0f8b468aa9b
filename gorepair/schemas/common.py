"""Shared request/response building blocks"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from gorepair.services.availability import parse_minutes


class CamelModel(BaseModel):
    """Accepts camelCase keys from clients as well as snake_case"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TimeSlot(CamelModel):
    """Preferred visit window, HH:MM local time"""
    start: str = Field(..., description="Window start, HH:MM")
    end: str = Field(..., description="Window end, HH:MM")

    @field_validator("start", "end")
    @classmethod
    def validate_time(cls, value: str) -> str:
        try:
            parse_minutes(value)
        except ValueError:
            raise ValueError("Time must be in HH:MM format")
        return value.strip()

    @model_validator(mode="after")
    def validate_order(self):
        if parse_minutes(self.start) >= parse_minutes(self.end):
            raise ValueError("Time slot start must be before end")
        return self


class Coordinates(CamelModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class Address(CamelModel):
    """Service address; ``location`` replaces flattened coordinate keys"""
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    country: str = "India"
    pincode: Optional[str] = Field(None, max_length=12)
    landmark: Optional[str] = None
    tag: Optional[str] = Field(None, description="home, office, other")
    location: Optional[Coordinates] = None

    def to_record(self) -> dict:
        """Address as stored on the booking (coordinates are kept in their own columns)"""
        return self.model_dump(exclude={"location"})


def success_response(message: str, data: Any = None, status_code: int = 200) -> dict:
    return {
        "status_code": status_code,
        "success": True,
        "message": message,
        "data": data
    }
