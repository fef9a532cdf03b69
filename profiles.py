"""Doctor and patient profile lookups."""
import re
from typing import Optional

import structlog
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import Actor
from availability import validate_template
from database import create_document, find_document, get_document, get_documents, update_document
from errors import Conflict, NotFound
from policy import authorize, scope
from schemas import Doctor, DoctorUpdate, Patient, PatientCreate

logger = structlog.get_logger(__name__)


def _contains(text: str) -> dict:
    return {"$regex": re.escape(text), "$options": "i"}


class Profiles:
    def __init__(self, database: Database):
        self.db = database

    def get_doctor(self, doctor_id: str) -> Optional[dict]:
        return get_document(self.db, "doctor", doctor_id)

    def require_doctor(self, doctor_id: str) -> dict:
        doctor = self.get_doctor(doctor_id)
        if doctor is None:
            raise NotFound("Doctor not found", code="provider_not_found")
        return doctor

    def list_doctors(
        self,
        specialization: Optional[str] = None,
        name: Optional[str] = None,
        language: Optional[str] = None,
        verified: Optional[bool] = None,
    ) -> list[dict]:
        """Search doctors. Text filters are case-insensitive substring matches."""
        query: dict = {}
        if specialization:
            query["specialization"] = _contains(specialization)
        if name:
            query["name"] = _contains(name)
        if language:
            query["languages"] = language
        if verified is not None:
            query["is_verified"] = verified
        return get_documents(self.db, "doctor", query, sort=[("name", 1)])

    def create_doctor(self, profile: Doctor, actor: Actor) -> dict:
        scope(actor, "doctor:create")
        validate_template(profile.weekly_template)
        try:
            doctor_id = create_document(self.db, "doctor", profile)
        except DuplicateKeyError:
            raise Conflict("User already has a doctor profile", code="profile_exists") from None
        logger.info("doctor_created", doctor_id=doctor_id, user_id=profile.user_id)
        return self.get_doctor(doctor_id)

    def update_doctor(self, doctor_id: str, changes: DoctorUpdate, actor: Actor) -> dict:
        """Edit profile details. Availability and verification have their own operations."""
        doctor = self.require_doctor(doctor_id)
        owner = doctor["id"] if doctor.get("user_id") == actor.user_id else None
        authorize(actor, "doctor:update", owner_id=doctor["id"], profile_id=owner)

        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            return doctor
        updated = update_document(self.db, "doctor", doctor_id, fields)
        if updated is None:
            raise NotFound("Doctor not found", code="provider_not_found")
        logger.info("doctor_updated", doctor_id=doctor_id, fields=sorted(fields), actor=actor.user_id)
        return updated

    def create_patient(self, data: PatientCreate, actor: Actor) -> dict:
        scope(actor, "patient:create")
        profile = Patient(user_id=actor.user_id, **data.model_dump())
        try:
            patient_id = create_document(self.db, "patient", profile)
        except DuplicateKeyError:
            raise Conflict("User already has a patient profile", code="profile_exists") from None
        logger.info("patient_created", patient_id=patient_id, user_id=actor.user_id)
        return get_document(self.db, "patient", patient_id)

    def patient_for(self, actor: Actor) -> Optional[dict]:
        return find_document(self.db, "patient", {"user_id": actor.user_id})

    def doctor_for(self, actor: Actor) -> Optional[dict]:
        return find_document(self.db, "doctor", {"user_id": actor.user_id})

    def profile_id(self, actor: Actor) -> Optional[str]:
        """The patient or doctor profile id behind an actor; None for admins or missing profiles."""
        if actor.role == "patient":
            profile = self.patient_for(actor)
        elif actor.role == "doctor":
            profile = self.doctor_for(actor)
        else:
            return None
        return profile["id"] if profile else None
