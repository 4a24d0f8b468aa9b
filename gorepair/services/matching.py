"""
Technician matching and assignment

Manual assignment checks the named technician; automatic assignment ranks
every eligible technician by (category match desc, distance asc, workload
asc, rating desc) and takes the best one whose capacity can still be
reserved.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from gorepair.config import settings
from gorepair.db.session import apply_statement_timeout, retry_on_disconnect
from gorepair.exceptions import (
    Conflict, GoRepairError, InsufficientSkills, NoTechnicianAvailable, TechnicianUnavailable
)
from gorepair.models.booking import Booking, BookingStatus
from gorepair.models.technician import TechnicianProfile, TechnicianStatus
from gorepair.models.user import User, UserRole
from gorepair.services.availability import AvailabilityEvaluator, availability_evaluator
from gorepair.services.bulk_booking import BulkOrchestrator
from gorepair.services.geocoding_service import geocoding_service
from gorepair.services.ledger import BookingLedger, booking_categories, required_skills

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    user: User
    profile: TechnicianProfile
    skill_match_score: int
    distance_km: Optional[float] = None

    @property
    def sort_key(self):
        return (
            -self.skill_match_score,
            self.distance_km if self.distance_km is not None else 0.0,
            self.profile.current_workload,
            -(self.profile.average_rating or 0.0),
        )


@dataclass
class AssignmentResult:
    booking: Booking
    technician: User
    assignment_type: str
    distance_km: Optional[float] = None
    override: bool = False
    skipped: List[int] = field(default_factory=list)


class MatchingEngine:
    def __init__(
        self,
        db: Session,
        ledger: Optional[BookingLedger] = None,
        evaluator: Optional[AvailabilityEvaluator] = None
    ):
        self.db = db
        self.ledger = ledger or BookingLedger(db)
        self.evaluator = evaluator or availability_evaluator

    # ============ CANDIDATES ============

    def _active_technicians(self):
        return self.db.query(User, TechnicianProfile).join(
            TechnicianProfile, TechnicianProfile.user_id == User.id
        ).filter(
            User.role == UserRole.TECHNICIAN,
            User.is_active.is_(True),
            User.is_online.is_(True),
            TechnicianProfile.status == TechnicianStatus.ACTIVE
        )

    def rank_candidates(self, booking: Booking, now: Optional[datetime] = None) -> List[Candidate]:
        """Eligible technicians for ``booking``, best first"""
        now = now or datetime.utcnow()
        apply_statement_timeout(self.db, settings.MATCHING_QUERY_TIMEOUT_MS)

        categories = booking_categories(booking)
        declined = {d.get("technician_id") for d in booking.declined_by or []}
        has_location = booking.latitude is not None and booking.longitude is not None

        rows = self._active_technicians().filter(
            TechnicianProfile.current_workload < TechnicianProfile.max_workload
        ).all()

        candidates = []
        for user, profile in rows:
            if user.id in declined:
                continue

            serviced = set(profile.services or [])
            if serviced and not (serviced & categories):
                continue

            if not self.evaluator.is_eligible(profile, now):
                continue

            distance = None
            if has_location:
                if user.latitude is None or user.longitude is None:
                    continue
                distance = geocoding_service.calculate_distance(
                    booking.latitude, booking.longitude, user.latitude, user.longitude
                )
                if distance > settings.MATCHING_RADIUS_KM:
                    continue

            candidates.append(Candidate(
                user=user,
                profile=profile,
                skill_match_score=len(serviced & categories),
                distance_km=distance
            ))

        candidates.sort(key=lambda c: c.sort_key)
        return candidates

    # ============ ASSIGNMENT ============

    @retry_on_disconnect
    def assign(
        self,
        booking: Booking,
        actor: User,
        technician_id: Optional[int] = None,
        force: bool = False,
        now: Optional[datetime] = None
    ) -> AssignmentResult:
        """
        Assign a technician to ``booking`` and commit.

        With ``technician_id`` the named technician is checked and reserved;
        ``force`` lets that reservation exceed the workload ceiling and
        replaces an existing technician. Without it the best automatic
        candidate is reserved, falling through to the next one if another
        request filled it first.
        """
        self.ledger.ensure_transition(booking, BookingStatus.ASSIGNED)

        previous_technician_id = booking.assigned_technician_id
        if previous_technician_id is not None and not force:
            raise Conflict("Booking already has an assigned technician. Use forceAssign=true to override")

        try:
            if previous_technician_id is not None:
                self.ledger._release_hold(booking, unassign=True)
            if technician_id is not None:
                result = self._assign_manual(booking, technician_id, force)
            else:
                result = self._assign_auto(booking, now)
        except GoRepairError:
            # Undo the released hold of the replaced technician
            self.db.rollback()
            raise

        technician = result.technician
        booking.assigned_technician_id = technician.id

        metadata: Dict[str, Any] = {
            "assignment_type": result.assignment_type,
            "assigned_by": actor.id,
            "assigned_at": datetime.utcnow().isoformat(),
            "distance": f"{result.distance_km:.2f} km" if result.distance_km is not None else None,
            "override": result.override,
        }
        if previous_technician_id is not None:
            metadata["replaced_technician_id"] = previous_technician_id

        self.ledger.transition(
            booking, BookingStatus.ASSIGNED, actor,
            note=f"Technician {technician.full_name} assigned",
            metadata=metadata
        )

        if booking.bulk_booking_id is not None:
            BulkOrchestrator(self.db, ledger=self.ledger).record_assignment(booking.bulk_booking, booking, technician, actor)

        self.db.commit()
        self.db.refresh(booking)

        logger.info(
            f"Booking {booking.booking_number} assigned to technician {technician.id} "
            f"({result.assignment_type}, override={result.override}, distance={metadata['distance']})"
        )
        return result

    def _assign_manual(self, booking: Booking, technician_id: int, force: bool) -> AssignmentResult:
        row = self._active_technicians().filter(User.id == technician_id).first()
        if row is None:
            raise TechnicianUnavailable()
        user, profile = row

        missing = sorted(required_skills(booking) - set(profile.skills or []))
        if missing:
            raise InsufficientSkills(missing)

        declined = {d.get("technician_id") for d in booking.declined_by or []}
        if user.id in declined and not force:
            raise TechnicianUnavailable("Technician has declined this booking")

        override = False
        if not self.ledger.reserve_capacity(user.id):
            if not force:
                raise TechnicianUnavailable("Technician has reached maximum workload")
            self.ledger.force_reserve_capacity(user.id)
            override = True
            logger.warning(
                f"Workload override: technician {user.id} assigned booking "
                f"{booking.booking_number} above max workload {profile.max_workload}"
            )

        distance = None
        if None not in (booking.latitude, booking.longitude, user.latitude, user.longitude):
            distance = geocoding_service.calculate_distance(
                booking.latitude, booking.longitude, user.latitude, user.longitude
            )

        return AssignmentResult(
            booking=booking,
            technician=user,
            assignment_type="manual",
            distance_km=distance,
            override=override
        )

    def _assign_auto(self, booking: Booking, now: Optional[datetime]) -> AssignmentResult:
        candidates = self.rank_candidates(booking, now)
        skipped = []
        for candidate in candidates:
            if self.ledger.reserve_capacity(candidate.user.id):
                return AssignmentResult(
                    booking=booking,
                    technician=candidate.user,
                    assignment_type="auto",
                    distance_km=candidate.distance_km,
                    skipped=skipped
                )
            # Filled by a concurrent assignment since the candidate query ran
            logger.info(f"Technician {candidate.user.id} reached capacity during matching, trying next")
            skipped.append(candidate.user.id)

        raise NoTechnicianAvailable()
