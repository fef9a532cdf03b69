"""Tests for the booking ledger: state machine and slot claims."""
import time

import pytest

from conftest import MONDAY
from errors import Conflict, Forbidden, InvalidState
from ledger import STALE_CLAIM_SECONDS, BookingLedger, as_midnight, check_transition, slot_key
from schemas import Appointment, TimeSlot

SLOT = TimeSlot(start_time="09:00", end_time="10:00")


def appointment(patient_id="patient-1", provider_id="provider-1", day=MONDAY, slot=SLOT) -> Appointment:
    return Appointment(patient_id=patient_id, provider_id=provider_id, date=as_midnight(day), time_slot=slot)


@pytest.fixture
def ledger(db):
    return BookingLedger(db)


class TestCheckTransition:
    @pytest.mark.parametrize(
        "role,current,new",
        [
            ("patient", "pending", "cancelled"),
            ("patient", "confirmed", "cancelled"),
            ("doctor", "pending", "confirmed"),
            ("doctor", "confirmed", "completed"),
            ("doctor", "confirmed", "no-show"),
            ("doctor", "pending", "cancelled"),
            ("admin", "pending", "completed"),
            ("admin", "confirmed", "pending"),
        ],
    )
    def test_allowed(self, role, current, new):
        check_transition(role, current, new)

    @pytest.mark.parametrize("terminal", ["cancelled", "completed", "no-show"])
    @pytest.mark.parametrize("role", ["patient", "doctor", "admin"])
    def test_terminal_states_reject_everything(self, role, terminal):
        with pytest.raises(InvalidState):
            check_transition(role, terminal, "pending")

    def test_patient_cannot_confirm(self):
        with pytest.raises(Forbidden):
            check_transition("patient", "pending", "confirmed")

    def test_doctor_cannot_complete_unconfirmed(self):
        with pytest.raises(InvalidState) as exc:
            check_transition("doctor", "pending", "completed")
        assert exc.value.code == "illegal_transition"

    def test_same_status_is_rejected(self):
        with pytest.raises(InvalidState):
            check_transition("admin", "pending", "pending")


class TestSlotKey:
    def test_key_from_model_and_stored_document(self):
        from_model = slot_key("p1", MONDAY, SLOT)
        from_doc = slot_key("p1", as_midnight(MONDAY), {"start_time": "09:00", "end_time": "10:00"})

        assert from_model == from_doc == "p1|2026-10-12|09:00-10:00"


class TestLedgerWrites:
    def test_insert_creates_pending_appointment_and_claim(self, ledger, db):
        created = ledger.insert(appointment())

        assert created["status"] == "pending"
        claim = db["slotclaim"].find_one({"_id": slot_key("provider-1", MONDAY, SLOT)})
        assert claim["appointment_id"] == created["id"]

    def test_duplicate_insert_is_rejected_by_the_store(self, ledger, db):
        ledger.insert(appointment())

        with pytest.raises(Conflict) as exc:
            ledger.insert(appointment(patient_id="patient-2"))

        assert exc.value.code == "slot_taken"
        assert db["appointment"].count_documents({}) == 1

    def test_other_slot_same_day_is_independent(self, ledger):
        ledger.insert(appointment())
        other = ledger.insert(appointment(slot=TimeSlot(start_time="10:00", end_time="11:00")))

        assert other["status"] == "pending"

    def test_find_conflicting_ignores_inactive(self, ledger):
        created = ledger.insert(appointment())
        assert ledger.find_conflicting("provider-1", MONDAY, SLOT)["id"] == created["id"]

        ledger.set_status(created, "cancelled")

        assert ledger.find_conflicting("provider-1", MONDAY, SLOT) is None

    def test_leaving_active_set_releases_claim(self, ledger, db):
        created = ledger.insert(appointment())
        confirmed = ledger.set_status(created, "confirmed")
        assert db["slotclaim"].count_documents({}) == 1

        ledger.set_status(confirmed, "completed")

        assert db["slotclaim"].count_documents({}) == 0
        assert ledger.insert(appointment(patient_id="patient-2"))["status"] == "pending"

    def test_set_status_is_compare_and_set(self, ledger):
        created = ledger.insert(appointment())
        ledger.set_status(created, "confirmed")

        # `created` still says pending; a second writer working from it loses
        with pytest.raises(InvalidState) as exc:
            ledger.set_status(created, "cancelled")

        assert exc.value.code == "status_changed"
        assert ledger.get(created["id"])["status"] == "confirmed"

    def test_delete_releases_claim(self, ledger, db):
        created = ledger.insert(appointment())

        assert ledger.delete(created) is True
        assert db["slotclaim"].count_documents({}) == 0
        assert ledger.get(created["id"]) is None

    def test_claim_of_inactive_appointment_is_reclaimed(self, ledger, db):
        created = ledger.insert(appointment())
        # Simulate a crash between the status write and the claim release
        db["appointment"].update_one({}, {"$set": {"status": "cancelled"}})

        rebooked = ledger.insert(appointment(patient_id="patient-2"))

        claim = db["slotclaim"].find_one({"_id": slot_key("provider-1", MONDAY, SLOT)})
        assert claim["appointment_id"] == rebooked["id"] != created["id"]

    def test_fresh_orphan_claim_still_blocks(self, ledger, db):
        """A claim whose appointment is not yet written may be a booking in flight."""
        db["slotclaim"].insert_one(
            {"_id": slot_key("provider-1", MONDAY, SLOT), "appointment_id": "0" * 24, "claimed_at": time.time()}
        )

        with pytest.raises(Conflict):
            ledger.insert(appointment())

    def test_abandoned_orphan_claim_is_reclaimed(self, ledger, db):
        db["slotclaim"].insert_one(
            {
                "_id": slot_key("provider-1", MONDAY, SLOT),
                "appointment_id": "0" * 24,
                "claimed_at": time.time() - STALE_CLAIM_SECONDS - 1,
            }
        )

        assert ledger.insert(appointment())["status"] == "pending"


class TestLedgerQueries:
    def test_find_sorts_by_date_then_start(self, ledger):
        later = ledger.insert(appointment(slot=TimeSlot(start_time="10:00", end_time="11:00")))
        earlier = ledger.insert(appointment())

        assert [a["id"] for a in ledger.find()] == [earlier["id"], later["id"]]

    def test_upcoming_excludes_past_and_inactive(self, ledger):
        past = ledger.insert(appointment(day=MONDAY.replace(day=5)))
        cancelled = ledger.set_status(ledger.insert(appointment(slot=TimeSlot(start_time="10:00", end_time="11:00"))), "cancelled")
        current = ledger.insert(appointment())

        ids = [a["id"] for a in ledger.upcoming(MONDAY)]

        assert ids == [current["id"]]
        assert past["id"] not in ids and cancelled["id"] not in ids
