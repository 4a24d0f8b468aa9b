# API v1 routers
# This file ensures all routers are properly exported

from . import (
    bulk_bookings,
    bookings,
    technicians
)

__all__ = [
    "bulk_bookings",
    "bookings",
    "technicians"
]
