"""
Provider availability: the weekly template of bookable windows.

A template maps weekday names to windows of fixed clock times. Updates replace
the stored days/template wholesale; windows are validated for ordering and
overlap before anything is written.
"""
from datetime import date
from typing import TYPE_CHECKING, Dict, List, Optional

import structlog
from pymongo.database import Database

from auth import Actor
from database import update_document
from errors import NotFound, ValidationError
from policy import authorize
from schemas import WEEKDAYS, Availability, TimeSlot, TimeWindow

if TYPE_CHECKING:
    from profiles import Profiles

logger = structlog.get_logger(__name__)


def weekday_of(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def validate_template(weekly_template: Dict[str, List[TimeWindow]]) -> None:
    for day, windows in weekly_template.items():
        ordered = sorted(windows, key=lambda w: (w.start_time, w.end_time))
        for window in ordered:
            if window.start_time >= window.end_time:
                raise ValidationError(
                    f"{day}: window {window.start_time}-{window.end_time} must start before it ends",
                    code="invalid_window",
                )
        for prev, nxt in zip(ordered, ordered[1:]):
            if nxt.start_time < prev.end_time:
                raise ValidationError(
                    f"{day}: window {nxt.start_time}-{nxt.end_time} overlaps {prev.start_time}-{prev.end_time}",
                    code="overlapping_windows",
                )


def window_matches(availability: Availability, weekday: str, time_slot: TimeSlot) -> bool:
    """True if an enabled window with exactly this start and end exists for the weekday."""
    return any(
        w.enabled and w.start_time == time_slot.start_time and w.end_time == time_slot.end_time
        for w in availability.weekly_template.get(weekday, [])
    )


class AvailabilityModel:
    def __init__(self, database: Database, profiles: "Profiles"):
        self.db = database
        self.profiles = profiles

    def get_template(self, provider_id: str) -> Availability:
        doctor = self.profiles.require_doctor(provider_id)
        return Availability(
            available_days=doctor.get("available_days", []),
            weekly_template=doctor.get("weekly_template", {}),
        )

    def set_template(
        self,
        provider_id: str,
        available_days: Optional[List[str]],
        weekly_template: Optional[Dict[str, List[TimeWindow]]],
        actor: Actor,
    ) -> Availability:
        doctor = self.profiles.require_doctor(provider_id)
        owner = doctor["id"] if doctor.get("user_id") == actor.user_id else None
        authorize(actor, "availability:update", owner_id=doctor["id"], profile_id=owner)

        changes: dict = {}
        if available_days is not None:
            changes["available_days"] = [d for d in WEEKDAYS if d in set(available_days)]
        if weekly_template is not None:
            validate_template(weekly_template)
            changes["weekly_template"] = {
                day: [w.model_dump() for w in windows] for day, windows in weekly_template.items()
            }
        if changes:
            doctor = update_document(self.db, "doctor", provider_id, changes)
            if doctor is None:
                raise NotFound("Doctor not found", code="provider_not_found")
            logger.info("availability_updated", provider_id=provider_id, actor=actor.user_id, fields=sorted(changes))
        return Availability(
            available_days=doctor.get("available_days", []),
            weekly_template=doctor.get("weekly_template", {}),
        )
