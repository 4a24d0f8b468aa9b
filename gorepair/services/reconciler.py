"""Parts line items and booking totals during a job"""
import logging
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from gorepair.db.session import retry_on_disconnect
from gorepair.exceptions import InvalidTransition, NotFound, ValidationError
from gorepair.models.booking import Booking, BookingStatus
from gorepair.models.catalog import Part
from gorepair.models.user import User
from gorepair.services.ledger import BookingLedger

logger = logging.getLogger(__name__)


class PartsReconciler:
    def __init__(self, db: Session, ledger: Optional[BookingLedger] = None):
        self.db = db
        self.ledger = ledger or BookingLedger(db)

    def _ensure_editable(self, booking: Booking, technician: User, target_note: str) -> None:
        self.ledger.ensure_assigned_technician(booking, technician)
        if booking.status != BookingStatus.IN_PROGRESS:
            raise InvalidTransition(
                booking.status, BookingStatus.IN_PROGRESS,
                message=f"Parts can only be {target_note} while the booking is in progress"
            )

    @retry_on_disconnect
    def add_parts(self, booking: Booking, technician: User, requested: Iterable[Dict[str, int]]) -> Booking:
        """Merge (part_id, quantity) pairs into the booking's part lines"""
        self._ensure_editable(booking, technician, "added")

        requested = [(int(r["part_id"]), int(1 if r.get("quantity") is None else r["quantity"])) for r in requested]
        if not requested:
            raise ValidationError("At least one part is required")
        if any(qty < 1 for _, qty in requested):
            raise ValidationError("Part quantity must be at least 1")

        catalog = {
            p.id: p for p in self.db.query(Part).filter(
                Part.id.in_({part_id for part_id, _ in requested}),
                Part.is_active.is_(True)
            ).all()
        }

        lines = [dict(line) for line in booking.parts or []]
        added = []
        for part_id, quantity in requested:
            part = catalog.get(part_id)
            if part is None:
                raise NotFound(f"Part {part_id} not found")

            for line in lines:
                if line["part_id"] == part_id:
                    line["quantity"] = int(line["quantity"]) + quantity
                    break
            else:
                lines.append({
                    "part_id": part.id,
                    "sku": part.sku,
                    "name": part.name,
                    "price": float(part.price),
                    "quantity": quantity,
                })
            added.append({"part_id": part_id, "quantity": quantity})

        booking.parts = lines
        self.ledger.recompute_amounts(booking)
        self.ledger.record(
            booking, technician, note="Parts added",
            metadata={"type": "parts_added", "parts": added, "parts_amount": float(booking.parts_amount)}
        )
        self.db.commit()
        self.db.refresh(booking)

        logger.info(f"Booking {booking.booking_number}: {len(added)} part line(s) added, final {booking.final_amount}")
        return booking

    @retry_on_disconnect
    def remove_part(
        self,
        booking: Booking,
        technician: User,
        part_id: int,
        quantity: Optional[int] = None
    ) -> Booking:
        """Reduce a part line by ``quantity``; no quantity (or the full one) drops the line"""
        self._ensure_editable(booking, technician, "removed")

        lines = [dict(line) for line in booking.parts or []]
        line = next((l for l in lines if l["part_id"] == part_id), None)
        if line is None:
            raise NotFound("Part not found on this booking")

        if quantity is not None and quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        removed = line["quantity"] if quantity is None else min(quantity, int(line["quantity"]))
        if removed >= int(line["quantity"]):
            lines.remove(line)
        else:
            line["quantity"] = int(line["quantity"]) - removed

        booking.parts = lines
        self.ledger.recompute_amounts(booking)
        self.ledger.record(
            booking, technician, note="Parts removed",
            metadata={
                "type": "parts_removed",
                "parts": [{"part_id": part_id, "quantity": removed}],
                "parts_amount": float(booking.parts_amount)
            }
        )
        self.db.commit()
        self.db.refresh(booking)
        return booking
