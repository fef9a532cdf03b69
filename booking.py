"""
Booking service: turns slot requests into committed ledger entries.

All checks happen before the single ledger write; the ledger's slot claim
makes the write itself first-writer-wins, so a request that slips past the
pre-check still ends in a Conflict rather than a double booking.
"""
from datetime import date, datetime
from typing import Callable, Optional

import structlog

from auth import Actor
from availability import AvailabilityModel, weekday_of, window_matches
from errors import BookingError, Conflict, Forbidden, NotFound, SlotUnavailable, ValidationError
from ledger import BookingLedger, as_midnight, check_transition
from meetings import MeetingProvider
from policy import OWN, UPDATABLE_FIELDS, authorize, record_owner, scope
from profiles import Profiles
from schemas import Appointment, AppointmentUpdate, TimeSlot
from slots import clinic_now, clinic_today

logger = structlog.get_logger(__name__)


class BookingService:
    def __init__(
        self,
        ledger: BookingLedger,
        availability: AvailabilityModel,
        profiles: Profiles,
        meetings: MeetingProvider,
        today: Callable[[], date] = clinic_today,
        now: Callable[[], datetime] = clinic_now,
    ):
        self.ledger = ledger
        self.availability = availability
        self.profiles = profiles
        self.meetings = meetings
        self.today = today
        self.now = now

    # =========================================================================
    # Availability
    # =========================================================================

    def ensure_available(self, provider_id: str, day: date, time_slot: TimeSlot) -> None:
        """Raise the first failing booking precondition for this tuple."""
        template = self.availability.get_template(provider_id)
        weekday = weekday_of(day)
        if weekday not in template.available_days:
            raise SlotUnavailable(f"Doctor is not available on {weekday}", code="day_unavailable")
        if not window_matches(template, weekday, time_slot):
            raise SlotUnavailable(
                f"{time_slot.start_time}-{time_slot.end_time} is not a bookable slot on {weekday}",
                code="slot_not_in_template",
            )
        if self.ledger.find_conflicting(provider_id, day, time_slot) is not None:
            raise SlotUnavailable("Selected slot is already booked", code="slot_taken")

    def check_availability(self, provider_id: str, day: date, time_slot: TimeSlot) -> bool:
        try:
            self.ensure_available(provider_id, day, time_slot)
        except (Conflict, NotFound):
            return False
        return True

    # =========================================================================
    # Booking
    # =========================================================================

    def create_appointment(
        self,
        actor: Actor,
        provider_id: str,
        day: date,
        time_slot: TimeSlot,
        consultation_type: str = "in-person",
        symptoms: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> dict:
        """Book a pending appointment for the calling patient.

        Video consultations get a meeting room attached once every check has
        passed.
        """
        scope(actor, "appointment:create")
        patient = self.profiles.patient_for(actor)
        if patient is None:
            raise NotFound("Patient not found", code="patient_not_found")
        if day < self.today():
            raise ValidationError("Cannot book a date in the past", code="date_in_past")

        self.ensure_available(provider_id, day, time_slot)
        doctor = self.profiles.require_doctor(provider_id)
        if consultation_type not in doctor.get("consultation_types", []):
            raise SlotUnavailable(
                f"Doctor does not offer {consultation_type} consultations",
                code="consultation_type_unavailable",
            )

        appointment = Appointment(
            patient_id=patient["id"],
            provider_id=provider_id,
            date=as_midnight(day),
            time_slot=time_slot,
            consultation_type=consultation_type,
            symptoms=symptoms,
            notes=notes,
        )
        if consultation_type == "video":
            appointment.meeting_id, appointment.meeting_link = self.meetings.new_meeting()
        created = self.ledger.insert(appointment)
        logger.info(
            "appointment_booked",
            appointment_id=created["id"],
            provider_id=provider_id,
            patient_id=patient["id"],
            date=day.isoformat(),
            slot=f"{time_slot.start_time}-{time_slot.end_time}",
            consultation_type=consultation_type,
        )
        return created

    def create_video_appointment(
        self,
        actor: Actor,
        provider_id: str,
        day: date,
        time_slot: TimeSlot,
        symptoms: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> dict:
        return self.create_appointment(
            actor, provider_id, day, time_slot, consultation_type="video", symptoms=symptoms, notes=notes
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_appointment(self, appointment_id: str, actor: Actor) -> dict:
        return self._authorized(appointment_id, actor, "appointment:read")

    def list_appointments(self, actor: Actor) -> list[dict]:
        return self.ledger.find(self._visible_to(actor))

    def upcoming(self, actor: Actor) -> list[dict]:
        return self.ledger.upcoming(self.today(), self._visible_to(actor))

    def for_patient(self, patient_id: str, actor: Actor) -> list[dict]:
        query = self._visible_to(actor)
        if query.get("patient_id", patient_id) != patient_id:
            return []
        query["patient_id"] = patient_id
        return self.ledger.find(query)

    def for_provider(self, provider_id: str, actor: Actor) -> list[dict]:
        query = self._visible_to(actor)
        if query.get("provider_id", provider_id) != provider_id:
            return []
        query["provider_id"] = provider_id
        return self.ledger.find(query)

    # =========================================================================
    # Mutations
    # =========================================================================

    def update_status(self, appointment_id: str, new_status: str, actor: Actor) -> dict:
        appointment = self._authorized(appointment_id, actor, "appointment:status")
        check_transition(actor.role, appointment["status"], new_status)
        updated = self.ledger.set_status(appointment, new_status)
        logger.info(
            "status_changed",
            appointment_id=appointment_id,
            old=appointment["status"],
            new=new_status,
            actor=actor.user_id,
            role=actor.role,
        )
        return updated

    def update_appointment(self, appointment_id: str, changes: AppointmentUpdate, actor: Actor) -> dict:
        appointment = self._authorized(appointment_id, actor, "appointment:update")
        fields = changes.model_dump(exclude_unset=True)
        denied = sorted(set(fields) - UPDATABLE_FIELDS[actor.role])
        if denied:
            raise Forbidden(f"Role '{actor.role}' may not update: {', '.join(denied)}", code="field_not_updatable")
        if not fields:
            return appointment
        updated = self.ledger.update_fields(appointment_id, fields)
        if updated is None:
            raise NotFound("Appointment not found")
        logger.info("appointment_updated", appointment_id=appointment_id, fields=sorted(fields), actor=actor.user_id)
        return updated

    def delete_appointment(self, appointment_id: str, actor: Actor) -> None:
        appointment = self._authorized(appointment_id, actor, "appointment:delete")
        if not self.ledger.delete(appointment):
            raise NotFound("Appointment not found")
        logger.info("appointment_deleted", appointment_id=appointment_id, status=appointment["status"], actor=actor.user_id)

    def sweep_no_shows(self, actor: Actor) -> list[dict]:
        """Mark confirmed appointments whose slot has already ended as no-show."""
        scope(actor, "appointment:sweep")
        marked = []
        for appointment in self.ledger.overdue_confirmed(self.now()):
            try:
                marked.append(self.ledger.set_status(appointment, "no-show"))
            except BookingError as e:
                logger.info("no_show_skipped", appointment_id=appointment["id"], reason=e.code)
        logger.info("no_show_sweep", marked=len(marked))
        return marked

    # =========================================================================
    # Helpers
    # =========================================================================

    def _authorized(self, appointment_id: str, actor: Actor, action: str) -> dict:
        scope(actor, action)
        appointment = self.ledger.get(appointment_id)
        if appointment is None:
            raise NotFound("Appointment not found")
        authorize(
            actor,
            action,
            owner_id=record_owner(appointment, actor.role),
            profile_id=self.profiles.profile_id(actor),
        )
        return appointment

    def _visible_to(self, actor: Actor) -> dict:
        """Mongo filter limiting appointment reads to what the actor may see."""
        if scope(actor, "appointment:read") != OWN:
            return {}
        profile_id = self.profiles.profile_id(actor)
        if profile_id is None:
            raise NotFound(f"{actor.role.capitalize()} profile not found")
        field = "patient_id" if actor.role == "patient" else "provider_id"
        return {field: profile_id}

