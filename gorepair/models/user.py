"""User model with role-based access"""
from sqlalchemy import Integer
from sqlalchemy import Column, String, Boolean, DateTime, Float, Enum as SQLEnum
from sqlalchemy.orm import relationship

import enum

from gorepair.models.base import Base, TimestampMixin


class UserRole(str, enum.Enum):
    """User role types"""
    USER = "user"
    TECHNICIAN = "technician"
    PARTNER = "partner"
    DEALER = "dealer"
    MANAGER = "manager"
    ADMIN = "admin"


# Roles allowed to dispatch technicians and manage any booking
STAFF_ROLES = (UserRole.ADMIN, UserRole.MANAGER, UserRole.PARTNER)


class User(Base, TimestampMixin):
    """
    Identity and credential core shared by every role.

    Role-specific data lives in a separate variant table keyed by the user id
    (``TechnicianProfile`` for technicians); it only exists for users of that
    role.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.USER)
    is_active = Column(Boolean, default=True, nullable=False)
    is_online = Column(Boolean, default=False, nullable=False)
    last_login = Column(DateTime, nullable=True)

    # Last known position (technicians report it from the field app)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    technician_profile = relationship(
        "TechnicianProfile",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan"
    )

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
