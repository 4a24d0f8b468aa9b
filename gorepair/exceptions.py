"""
Domain error taxonomy

Every component raises the subclass describing what it detected; the
handlers in ``gorepair.main`` render them with the uniform response
envelope. None of these are retried: they describe conditions the caller
has to act on.
"""
from typing import Any, Dict, List, Optional


class GoRepairError(Exception):
    """Base class for errors surfaced verbatim to API callers"""
    status_code: int = 400
    default_message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, data: Optional[Any] = None):
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(GoRepairError):
    status_code = 400
    default_message = "Invalid request"


class NotFound(GoRepairError):
    status_code = 404
    default_message = "Resource not found"


class Forbidden(GoRepairError):
    status_code = 403
    default_message = "Access denied"


class Conflict(GoRepairError):
    status_code = 409
    default_message = "Resource was modified or already processed"


class InvalidTransition(GoRepairError):
    status_code = 400
    default_message = "Status change not allowed"

    def __init__(self, current, target, message: Optional[str] = None):
        self.current = current
        self.target = target
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            message or f"Cannot change status from {current_value} to {target_value}",
            data={"current_status": current_value, "requested_status": target_value}
        )


class InvalidCode(GoRepairError):
    status_code = 400
    default_message = "Invalid OTP"

    def __init__(self, remaining_attempts: int):
        self.remaining_attempts = remaining_attempts
        super().__init__(
            f"Invalid OTP. {remaining_attempts} attempt(s) remaining",
            data={"remaining_attempts": remaining_attempts}
        )


class CodeLocked(GoRepairError):
    status_code = 400
    default_message = "Maximum OTP attempts reached. Please generate a new OTP"


class NoTechnicianAvailable(GoRepairError):
    status_code = 400
    default_message = "No available technicians matching the criteria"


class TechnicianUnavailable(GoRepairError):
    status_code = 400
    default_message = "Technician not found or not available"


class InsufficientSkills(GoRepairError):
    status_code = 400
    default_message = "Technician does not have all the required skills for this booking"

    def __init__(self, missing_skills: List[str]):
        self.missing_skills = missing_skills
        super().__init__(data={"missing_skills": missing_skills})


class BulkCreationFailed(GoRepairError):
    status_code = 400
    default_message = "Failed to create any bookings"

    def __init__(self, errors: List[Dict[str, Any]]):
        self.errors = errors
        super().__init__(data={"errors": errors})


class Internal(GoRepairError):
    status_code = 500
    default_message = "An unexpected error occurred. Please try again later."
