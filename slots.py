"""
Slot projection.

Turns a weekly template into dated slots over a rolling horizon. Projection
answers "what could be booked"; it never looks at existing appointments.
"""
from datetime import date, datetime, timedelta
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from availability import weekday_of
from config import CLINIC_TIMEZONE, SLOT_HORIZON_DAYS
from schemas import Availability, ProjectedSlot


def clinic_now() -> datetime:
    return datetime.now(ZoneInfo(CLINIC_TIMEZONE))


def clinic_today() -> date:
    return clinic_now().date()


def project_slots(
    availability: Availability,
    horizon_days: int = SLOT_HORIZON_DAYS,
    today: Optional[date] = None,
) -> Iterator[ProjectedSlot]:
    """Yield one ProjectedSlot per bookable date in [today, today + horizon_days).

    Dates whose weekday is not in available_days, or which have no enabled
    window, are skipped.
    """
    start = today or clinic_today()
    available_days = set(availability.available_days)
    for offset in range(horizon_days):
        day = start + timedelta(days=offset)
        weekday = weekday_of(day)
        if weekday not in available_days:
            continue
        windows = [w for w in availability.weekly_template.get(weekday, []) if w.enabled]
        if windows:
            yield ProjectedSlot(date=day, weekday=weekday, slots=windows)
