"""Technician role variant"""
from sqlalchemy import Column, String, Boolean, Integer, Float, ForeignKey, DateTime, Enum as SQLEnum, JSON, CheckConstraint
from sqlalchemy.orm import relationship
import enum

from gorepair.models.base import Base, TimestampMixin


class TechnicianStatus(str, enum.Enum):
    """Technician account status"""
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    ON_LEAVE = "on_leave"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class TechnicianProfile(Base, TimestampMixin):
    """Technician-only fields, one row per technician user"""
    __tablename__ = "technician_profiles"
    __table_args__ = (
        CheckConstraint("current_workload >= 0", name="ck_technician_workload_non_negative"),
        CheckConstraint("max_workload >= 1", name="ck_technician_max_workload_positive"),
    )

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    # Professional details
    skills = Column(JSON, nullable=False, default=list)  # ["ac_gas_refill", "wiring", ...]
    services = Column(JSON, nullable=False, default=list)  # Serviced categories; empty = no restriction
    experience_years = Column(Integer, default=0)

    # Availability: {"monday": {"start": "09:00", "end": "18:00", "available": true}, ...}
    working_hours = Column(JSON, nullable=False, default=dict)
    is_on_break = Column(Boolean, default=False, nullable=False)
    break_start = Column(DateTime, nullable=True)
    break_end = Column(DateTime, nullable=True)

    # Capacity. current_workload is only ever changed by conditional UPDATEs
    max_workload = Column(Integer, default=5, nullable=False)
    current_workload = Column(Integer, default=0, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    # Performance
    total_jobs_completed = Column(Integer, default=0, nullable=False)
    average_rating = Column(Float, default=0.0, nullable=False)  # 0.0 to 5.0
    total_ratings = Column(Integer, default=0, nullable=False)

    status = Column(SQLEnum(TechnicianStatus), default=TechnicianStatus.PENDING_VERIFICATION, nullable=False)

    user = relationship("User", back_populates="technician_profile")

    def __repr__(self):
        return f"<TechnicianProfile user={self.user_id} workload={self.current_workload}/{self.max_workload}>"
