"""Tests for slot projection from the weekly template."""
from datetime import timedelta

from conftest import MONDAY, TEMPLATE, WEDNESDAY
from schemas import Availability
from slots import project_slots


def template(**overrides) -> Availability:
    return Availability(**{**TEMPLATE, **overrides})


class TestProjectSlots:
    def test_projects_only_available_days(self):
        """Tuesday has windows but is not in available_days, so it is skipped."""
        projected = list(project_slots(template(), horizon_days=7, today=MONDAY))

        assert [p.date for p in projected] == [MONDAY, WEDNESDAY]
        assert [p.weekday for p in projected] == ["monday", "wednesday"]

    def test_carries_only_enabled_windows(self):
        monday = next(project_slots(template(), horizon_days=7, today=MONDAY))

        assert [(w.start_time, w.end_time) for w in monday.slots] == [("09:00", "10:00"), ("10:00", "11:00")]
        assert all(w.enabled for w in monday.slots)

    def test_anchor_mid_week(self):
        """Starting on a Tuesday the 7-day window ends with the following Monday."""
        projected = list(project_slots(template(), horizon_days=7, today=MONDAY + timedelta(days=1)))

        assert [p.date for p in projected] == [WEDNESDAY, MONDAY + timedelta(days=7)]

    def test_horizon_spans_multiple_weeks(self):
        projected = list(project_slots(template(), horizon_days=14, today=MONDAY))

        assert len(projected) == 4
        assert projected == sorted(projected, key=lambda p: p.date)

    def test_day_without_enabled_windows_is_skipped(self):
        availability = template(
            weekly_template={
                "monday": [{"start_time": "09:00", "end_time": "10:00", "enabled": False}],
                "wednesday": [{"start_time": "14:00", "end_time": "15:00", "enabled": True}],
            }
        )

        projected = list(project_slots(availability, horizon_days=7, today=MONDAY))

        assert [p.weekday for p in projected] == ["wednesday"]

    def test_available_day_without_template_is_skipped(self):
        availability = template(available_days=["monday", "friday"])

        projected = list(project_slots(availability, horizon_days=7, today=MONDAY))

        assert [p.weekday for p in projected] == ["monday"]

    def test_projection_is_restartable(self):
        availability = template()

        first = list(project_slots(availability, horizon_days=7, today=MONDAY))
        second = list(project_slots(availability, horizon_days=7, today=MONDAY))

        assert first == second

    def test_zero_horizon_is_empty(self):
        assert list(project_slots(template(), horizon_days=0, today=MONDAY)) == []
