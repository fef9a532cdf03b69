"""E-prescriptions issued against an appointment."""
import structlog
from pymongo.database import Database

from auth import Actor
from database import create_document, get_document, get_documents
from errors import InvalidState, NotFound
from ledger import BookingLedger
from policy import OWN, authorize, record_owner, scope
from profiles import Profiles
from schemas import Prescription, PrescriptionCreate

logger = structlog.get_logger(__name__)

# A prescription may reference an appointment that is in progress or done.
PRESCRIBABLE_STATUSES = ("pending", "confirmed", "completed")


class PrescriptionService:
    collection = "prescription"

    def __init__(self, database: Database, ledger: BookingLedger, profiles: Profiles):
        self.db = database
        self.ledger = ledger
        self.profiles = profiles

    def create(self, data: PrescriptionCreate, actor: Actor) -> dict:
        scope(actor, "prescription:create")
        doctor = self.profiles.doctor_for(actor)
        if doctor is None:
            raise NotFound("Doctor not found", code="provider_not_found")
        appointment = self.ledger.get(data.appointment_id)
        if appointment is None:
            raise NotFound("Appointment not found")
        authorize(actor, "prescription:create", owner_id=appointment["provider_id"], profile_id=doctor["id"])
        if appointment["status"] not in PRESCRIBABLE_STATUSES:
            raise InvalidState(f"Cannot prescribe for a {appointment['status']} appointment", code="not_prescribable")

        prescription = Prescription(
            appointment_id=appointment["id"],
            patient_id=appointment["patient_id"],
            provider_id=doctor["id"],
            **data.model_dump(exclude={"appointment_id"}),
        )
        prescription_id = create_document(self.db, self.collection, prescription)
        self.ledger.update_fields(appointment["id"], {"prescription_ref": prescription_id})
        logger.info("prescription_issued", prescription_id=prescription_id, appointment_id=appointment["id"])
        return get_document(self.db, self.collection, prescription_id)

    def get(self, prescription_id: str, actor: Actor) -> dict:
        scope(actor, "prescription:read")
        prescription = get_document(self.db, self.collection, prescription_id)
        if prescription is None:
            raise NotFound("Prescription not found")
        authorize(
            actor,
            "prescription:read",
            owner_id=record_owner(prescription, actor.role),
            profile_id=self.profiles.profile_id(actor),
        )
        return prescription

    def list(self, actor: Actor) -> list:
        query: dict = {}
        if scope(actor, "prescription:read") == OWN:
            profile_id = self.profiles.profile_id(actor)
            if profile_id is None:
                return []
            query["patient_id" if actor.role == "patient" else "provider_id"] = profile_id
        return get_documents(self.db, self.collection, query, sort=[("created_at", -1)])
