"""Back-office operations: doctor vetting and the dashboard."""
from typing import get_args

import structlog
from pymongo.database import Database

from auth import Actor
from database import count_documents, delete_document, get_documents, update_document
from errors import Conflict, NotFound
from ledger import ACTIVE_STATUSES, BookingLedger
from policy import scope
from profiles import Profiles
from schemas import AppointmentStatus

logger = structlog.get_logger(__name__)

RECENT_ORDERS = 5


class AdminService:
    def __init__(self, database: Database, profiles: Profiles, ledger: BookingLedger):
        self.db = database
        self.profiles = profiles
        self.ledger = ledger

    def approve_doctor(self, doctor_id: str, actor: Actor) -> dict:
        scope(actor, "doctor:approve")
        self.profiles.require_doctor(doctor_id)
        doctor = update_document(self.db, "doctor", doctor_id, {"is_verified": True})
        if doctor is None:
            raise NotFound("Doctor not found", code="provider_not_found")
        logger.info("doctor_approved", doctor_id=doctor_id, actor=actor.user_id)
        return doctor

    def delete_doctor(self, doctor_id: str, actor: Actor) -> None:
        scope(actor, "doctor:delete")
        self.profiles.require_doctor(doctor_id)
        if self.ledger.find({"provider_id": doctor_id, "status": {"$in": list(ACTIVE_STATUSES)}}, limit=1):
            raise Conflict("Doctor has upcoming appointments", code="provider_has_appointments")
        delete_document(self.db, "doctor", doctor_id)
        logger.info("doctor_deleted", doctor_id=doctor_id, actor=actor.user_id)

    def dashboard_stats(self, actor: Actor) -> dict:
        scope(actor, "stats:read")
        revenue = list(
            self.db["payment"].aggregate(
                [{"$match": {"status": "completed"}}, {"$group": {"_id": None, "total": {"$sum": "$amount"}}}]
            )
        )
        return {
            "doctors": count_documents(self.db, "doctor"),
            "verified_doctors": count_documents(self.db, "doctor", {"is_verified": True}),
            "patients": count_documents(self.db, "patient"),
            "appointments": count_documents(self.db, "appointment"),
            "appointments_by_status": {
                status: count_documents(self.db, "appointment", {"status": status}) for status in get_args(AppointmentStatus)
            },
            "prescriptions": count_documents(self.db, "prescription"),
            "medicine_orders": count_documents(self.db, "medicineorder"),
            "revenue": revenue[0]["total"] if revenue else 0.0,
            "recent_orders": get_documents(self.db, "medicineorder", sort=[("created_at", -1)], limit=RECENT_ORDERS),
        }
