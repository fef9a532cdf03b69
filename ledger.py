"""
Booking ledger: the appointment collection and its state machine.

A (provider, date, time slot) tuple may be held by at most one active
appointment. Besides the appointment itself, every active appointment owns a
document in the `slotclaim` collection whose `_id` is the slot key, so the
store's primary-key uniqueness decides which of two concurrent bookings wins.
The claim is released when the appointment leaves the active set.
"""
import time
from datetime import date, datetime
from typing import Optional, Union

import structlog
from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, delete_document, get_document, get_documents, update_document
from errors import Forbidden, InvalidState, SlotUnavailable
from schemas import Appointment, TimeSlot

logger = structlog.get_logger(__name__)

ACTIVE_STATUSES = ("pending", "confirmed")
TERMINAL_STATUSES = ("cancelled", "completed", "no-show")

# Transitions a non-admin role may request, keyed by current status.
# Admins may move any non-terminal appointment to any other status.
TRANSITIONS = {
    "patient": {
        "pending": {"cancelled"},
        "confirmed": {"cancelled"},
    },
    "doctor": {
        "pending": {"confirmed", "cancelled"},
        "confirmed": {"completed", "no-show", "cancelled"},
    },
}

# A claim whose appointment has not appeared after this long is abandoned.
STALE_CLAIM_SECONDS = 60

SORT_BY_SCHEDULE = [("date", 1), ("time_slot.start_time", 1)]


def as_midnight(day: Union[date, datetime]) -> datetime:
    return datetime(day.year, day.month, day.day)


def slot_key(provider_id: str, day: Union[date, datetime], time_slot: Union[TimeSlot, dict]) -> str:
    if isinstance(time_slot, dict):
        time_slot = TimeSlot(**time_slot)
    return f"{provider_id}|{day.strftime('%Y-%m-%d')}|{time_slot.start_time}-{time_slot.end_time}"


def check_transition(role: str, current: str, new: str) -> None:
    """Raise unless `role` may move an appointment from `current` to `new`."""
    if current in TERMINAL_STATUSES:
        raise InvalidState(f"Appointment is already {current}", code="terminal_status")
    if new == current:
        raise InvalidState(f"Appointment is already {current}", code="unchanged_status")
    if role == "admin":
        return
    allowed = TRANSITIONS.get(role, {})
    if not any(new in targets for targets in allowed.values()):
        raise Forbidden(f"Role '{role}' may not set status '{new}'")
    if new not in allowed.get(current, set()):
        raise InvalidState(f"Cannot move appointment from {current} to {new}", code="illegal_transition")


class BookingLedger:
    collection = "appointment"
    claims = "slotclaim"

    def __init__(self, database: Database):
        self.db = database

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, appointment_id: str) -> Optional[dict]:
        return get_document(self.db, self.collection, appointment_id)

    def find_conflicting(self, provider_id: str, day: date, time_slot: TimeSlot) -> Optional[dict]:
        """The active appointment holding this tuple, if any."""
        found = get_documents(
            self.db,
            self.collection,
            {
                "provider_id": provider_id,
                "date": as_midnight(day),
                "time_slot.start_time": time_slot.start_time,
                "time_slot.end_time": time_slot.end_time,
                "status": {"$in": list(ACTIVE_STATUSES)},
            },
            limit=1,
        )
        return found[0] if found else None

    def find(self, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> list[dict]:
        return get_documents(self.db, self.collection, filter_dict or {}, sort=SORT_BY_SCHEDULE, limit=limit)

    def upcoming(self, today: date, filter_dict: Optional[dict] = None, limit: int = 10) -> list[dict]:
        query = dict(filter_dict or {})
        query["date"] = {"$gte": as_midnight(today)}
        query["status"] = {"$in": list(ACTIVE_STATUSES)}
        return self.find(query, limit=limit)

    def overdue_confirmed(self, now: datetime) -> list[dict]:
        """Confirmed appointments whose slot ended before `now` (clinic local time)."""
        today = as_midnight(now)
        return self.find(
            {
                "status": "confirmed",
                "$or": [
                    {"date": {"$lt": today}},
                    {"date": today, "time_slot.end_time": {"$lte": now.strftime("%H:%M")}},
                ],
            }
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def insert(self, appointment: Appointment) -> dict:
        """Commit a new active appointment, or raise SlotUnavailable if its slot is held."""
        key = slot_key(appointment.provider_id, appointment.date, appointment.time_slot)
        appointment_id = ObjectId()
        self._claim(key, str(appointment_id))
        try:
            create_document(self.db, self.collection, appointment, _id=appointment_id)
        except PyMongoError:
            self._release(key, str(appointment_id))
            raise
        return self.get(str(appointment_id))

    def set_status(self, appointment: dict, new_status: str) -> dict:
        """Compare-and-set the status; releases the slot when leaving the active set."""
        updated = update_document(
            self.db,
            self.collection,
            appointment["id"],
            {"status": new_status},
            expected={"status": appointment["status"]},
        )
        if updated is None:
            raise InvalidState("Appointment changed concurrently, reload and retry", code="status_changed")
        if appointment["status"] in ACTIVE_STATUSES and new_status not in ACTIVE_STATUSES:
            self.release(updated)
        return updated

    def update_fields(self, appointment_id: str, changes: dict) -> Optional[dict]:
        return update_document(self.db, self.collection, appointment_id, changes)

    def delete(self, appointment: dict) -> bool:
        deleted = delete_document(self.db, self.collection, appointment["id"])
        if deleted and appointment["status"] in ACTIVE_STATUSES:
            self.release(appointment)
        return deleted

    def release(self, appointment: dict) -> None:
        key = slot_key(appointment["provider_id"], appointment["date"], appointment["time_slot"])
        self._release(key, appointment["id"])

    # =========================================================================
    # Slot claims
    # =========================================================================

    def _claim(self, key: str, appointment_id: str, retry: bool = True) -> None:
        try:
            self.db[self.claims].insert_one(
                {"_id": key, "appointment_id": appointment_id, "claimed_at": time.time()}
            )
        except DuplicateKeyError:
            holder = self.db[self.claims].find_one({"_id": key})
            if retry and (holder is None or self._is_stale(holder)):
                if holder is not None:
                    logger.warning("stale_slot_claim_removed", slot=key, appointment_id=holder["appointment_id"])
                    self._release(key, holder["appointment_id"])
                return self._claim(key, appointment_id, retry=False)
            logger.info("slot_conflict", slot=key)
            raise SlotUnavailable("Selected slot is already booked", code="slot_taken") from None

    def _is_stale(self, holder: dict) -> bool:
        appointment = self.get(holder["appointment_id"])
        if appointment is None:
            return time.time() - holder.get("claimed_at", 0) > STALE_CLAIM_SECONDS
        return appointment["status"] not in ACTIVE_STATUSES

    def _release(self, key: str, appointment_id: str) -> None:
        self.db[self.claims].delete_one({"_id": key, "appointment_id": appointment_id})
