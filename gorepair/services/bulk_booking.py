"""
Bulk booking orchestration

A batch creates its member bookings one by one inside savepoints of a single
transaction. Failed items are collected as ``{"index", "error"}`` and skipped;
the aggregate record is written and the transaction committed only if at
least one booking was created. When none is, the whole transaction is rolled
back and ``BulkCreationFailed`` carries the collected errors.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gorepair.db.session import retry_on_disconnect
from gorepair.exceptions import BulkCreationFailed, GoRepairError, NotFound, ValidationError
from gorepair.models.booking import Booking, BookingStatus
from gorepair.models.bulk_booking import BulkBooking, BulkBookingStatus
from gorepair.models.user import User
from gorepair.schemas.bulk_booking import BulkBookingItem
from gorepair.services.ledger import BookingLedger, HOLDING_STATUSES, generate_booking_number

logger = logging.getLogger(__name__)


def _describe(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else first.get("msg", str(error))


class BulkOrchestrator:
    def __init__(self, db: Session, ledger: Optional[BookingLedger] = None):
        self.db = db
        self.ledger = ledger or BookingLedger(db)

    def get_bulk(self, bulk_id: int, include_deleted: bool = False) -> BulkBooking:
        query = self.db.query(BulkBooking).filter(BulkBooking.id == bulk_id)
        if not include_deleted:
            query = query.filter(BulkBooking.deleted.is_(False))
        bulk = query.first()
        if not bulk:
            raise NotFound("Bulk booking not found")
        return bulk

    @staticmethod
    def _history_entry(status: BulkBookingStatus, actor: Optional[User], note: str) -> Dict[str, Any]:
        return {
            "status": status.value,
            "changed_at": datetime.utcnow().isoformat(),
            "changed_by": actor.id if actor else None,
            "note": note,
        }

    # ============ CREATION ============

    @retry_on_disconnect
    def create_bulk(
        self,
        actor: User,
        client_id: int,
        location: Dict[str, Any],
        items: List[Dict[str, Any]],
        scheduled_date: datetime,
        preferred_time_slot: Dict[str, str],
        notes: Optional[str] = None,
        priority: str = "medium",
        tags: Optional[List[str]] = None
    ) -> Tuple[BulkBooking, List[Dict[str, Any]]]:
        """
        ``location`` holds ``address`` (dict), ``latitude``, ``longitude`` and
        an optional ``formatted_address``. ``items`` are raw per-booking
        payloads. Returns the aggregate and the per-index error list.
        """
        if not items:
            raise ValidationError("At least one booking is required")

        client = self.db.query(User).filter(User.id == client_id, User.is_active.is_(True)).first()
        if not client:
            raise NotFound("Client not found")

        created: List[Booking] = []
        errors: List[Dict[str, Any]] = []

        try:
            for index, raw in enumerate(items):
                try:
                    item = BulkBookingItem.model_validate(raw)
                    with self.db.begin_nested():
                        booking = self.ledger.build_booking(
                            client,
                            services=[s.model_dump() for s in item.services],
                            address=location["address"],
                            schedule_date=scheduled_date,
                            preferred_time_slot=preferred_time_slot,
                            actor=actor,
                            latitude=location["latitude"],
                            longitude=location["longitude"],
                            payment_method=item.payment_method,
                            discount_amount=item.discount_amount,
                            notes=item.notes or notes,
                            note="Created as part of bulk booking"
                        )
                    created.append(booking)
                except PydanticValidationError as e:
                    errors.append({"index": index, "error": _describe(e)})
                except GoRepairError as e:
                    errors.append({"index": index, "error": e.message})
                except IntegrityError as e:
                    errors.append({"index": index, "error": f"Could not store booking: {e.orig}"})

            if not created:
                raise BulkCreationFailed(errors)

            categories = sorted({
                line["category"] for b in created for line in b.services if line.get("category")
            })
            bulk = BulkBooking(
                bulk_booking_number=generate_booking_number("BB"),
                client_id=client.id,
                location={
                    "address": location["address"],
                    "formatted_address": location.get("formatted_address") or "",
                },
                latitude=location["latitude"],
                longitude=location["longitude"],
                booking_count=len(created),
                service_types=categories,
                scheduled_date=scheduled_date,
                preferred_time_slot=preferred_time_slot,
                estimated_duration=sum(
                    int(line.get("estimated_duration") or 0) * int(line.get("quantity", 1))
                    for b in created for line in b.services
                ),
                status=BulkBookingStatus.PENDING,
                completion_percentage=0,
                assigned_technicians=[],
                total_amount=sum((Decimal(str(b.final_amount)) for b in created), Decimal("0")),
                notes=notes,
                priority=priority,
                tags=tags or [],
                status_history=[self._history_entry(BulkBookingStatus.PENDING, actor, "Bulk booking created")],
                created_by_id=actor.id,
            )
            self.db.add(bulk)
            self.db.flush()

            for booking in created:
                booking.bulk_booking_id = bulk.id

            self.db.commit()
        except Exception:
            self.db.rollback()
            if not created:
                logger.warning(f"Bulk booking for client {client_id} failed: all {len(items)} item(s) rejected")
            raise

        self.db.refresh(bulk)
        logger.info(
            f"Bulk booking {bulk.bulk_booking_number} created with {len(created)} booking(s), "
            f"{len(errors)} failed"
        )
        return bulk, errors

    # ============ AGGREGATE UPDATES ============

    def recompute_status(self, bulk: BulkBooking, actor: Optional[User] = None) -> BulkBooking:
        """Derive completion percentage and status from the member bookings (no commit)"""
        members = list(bulk.bookings)
        if not members:
            bulk.completion_percentage = 0
            return bulk

        statuses = [b.status for b in members]
        completed = statuses.count(BookingStatus.COMPLETED)
        bulk.completion_percentage = round(completed / len(members) * 100)

        if all(s == BookingStatus.CANCELLED for s in statuses):
            status = BulkBookingStatus.CANCELLED
        elif bulk.completion_percentage == 100:
            status = BulkBookingStatus.COMPLETED
        elif bulk.completion_percentage > 0:
            status = BulkBookingStatus.PARTIALLY_COMPLETED
        elif any(s in (BookingStatus.REACHED, BookingStatus.OTP_PENDING, BookingStatus.IN_PROGRESS) for s in statuses):
            status = BulkBookingStatus.IN_PROGRESS
        elif any(b.assigned_technician_id is not None and b.status in HOLDING_STATUSES for b in members):
            status = BulkBookingStatus.ASSIGNED
        else:
            status = BulkBookingStatus.PENDING

        if status != bulk.status:
            bulk.status_history = list(bulk.status_history or []) + [
                self._history_entry(status, actor, f"Status changed to {status.value}")
            ]
            bulk.status = status
        if actor:
            bulk.updated_by_id = actor.id
        return bulk

    def record_assignment(self, bulk: BulkBooking, booking: Booking, technician: User, actor: Optional[User] = None) -> None:
        """Add ``booking`` to the technician's summary on the aggregate (no commit)"""
        summaries = [dict(s) for s in bulk.assigned_technicians or []]
        for summary in summaries:
            if summary["technician_id"] == technician.id:
                if booking.id not in summary["booking_ids"]:
                    summary["booking_ids"] = summary["booking_ids"] + [booking.id]
                break
        else:
            summaries.append({
                "technician_id": technician.id,
                "technician_name": technician.full_name,
                "booking_ids": [booking.id],
                "status": "pending",
                "assigned_at": datetime.utcnow().isoformat(),
            })
        bulk.assigned_technicians = summaries
        self.recompute_status(bulk, actor)

    def record_unassignment(self, bulk: BulkBooking, booking: Booking, technician_id: int) -> None:
        summaries = []
        for summary in bulk.assigned_technicians or []:
            summary = dict(summary)
            if summary["technician_id"] == technician_id:
                summary["booking_ids"] = [i for i in summary["booking_ids"] if i != booking.id]
                if not summary["booking_ids"]:
                    continue
            summaries.append(summary)
        bulk.assigned_technicians = summaries

    @retry_on_disconnect
    def refresh(self, bulk: BulkBooking, actor: Optional[User] = None) -> BulkBooking:
        self.recompute_status(bulk, actor)
        self.db.commit()
        self.db.refresh(bulk)
        return bulk

    @retry_on_disconnect
    def soft_delete(self, bulk: BulkBooking, actor: User) -> BulkBooking:
        bulk.deleted = True
        bulk.deleted_at = datetime.utcnow()
        bulk.deleted_by_id = actor.id
        bulk.updated_by_id = actor.id
        self.db.commit()
        logger.info(f"Bulk booking {bulk.bulk_booking_number} soft-deleted by user {actor.id}")
        return bulk
