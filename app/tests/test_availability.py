from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.domain.scheduling.availability_service import AvailabilityService
from app.domain.scheduling.exceptions import NotFoundError
from app.models import Tenant
from app.models_appointment import DoctorSchedule

from conftest import MONDAY, NOW, at

NEXT_MONDAY = MONDAY + timedelta(days=7)


def _schedule(db, seed) -> DoctorSchedule:
    return db.query(DoctorSchedule).filter(DoctorSchedule.id == seed.schedule_id).one()


def _slots(db, seed, day, now=NOW, **kwargs):
    return AvailabilityService(db, **kwargs).get_available_slots(seed.tenant_id, seed.doctor_id, day, now)


def test_open_day_lists_every_slot_in_order(db, seed) -> None:
    result = _slots(db, seed, NEXT_MONDAY)

    assert result.reason is None
    assert result.slot_duration == 30
    assert len(result.slots) == 16
    assert result.slots[0] == "09:00"
    assert result.slots[7] == "12:30"
    assert result.slots[8] == "14:00"
    assert result.slots[-1] == "17:30"
    assert result.slots == sorted(result.slots)


def test_query_is_idempotent(db, seed, make_appointment) -> None:
    make_appointment(NEXT_MONDAY, "09:00")

    first = _slots(db, seed, NEXT_MONDAY)
    second = _slots(db, seed, NEXT_MONDAY)

    assert first.slots == second.slots


def test_non_working_day(db, seed) -> None:
    result = _slots(db, seed, MONDAY + timedelta(days=6))  # Sunday

    assert result.slots == []
    assert result.reason == "not_available_this_day"
    assert result.message == "Doctor is not available on this day"


def test_leave_date_blocks_the_day(db, seed) -> None:
    _schedule(db, seed).leave_dates = [{"date": NEXT_MONDAY.isoformat(), "reason": "Conference"}]
    db.commit()

    result = _slots(db, seed, NEXT_MONDAY)

    assert result.slots == []
    assert result.reason == "on_leave"


def test_past_date(db, seed) -> None:
    result = _slots(db, seed, MONDAY - timedelta(days=7))

    assert result.slots == []
    assert result.reason == "in_the_past"


def test_advance_window_boundary(db, seed) -> None:
    last_day = MONDAY + timedelta(days=30)  # a Wednesday

    assert _slots(db, seed, last_day).slots
    assert _slots(db, seed, last_day + timedelta(days=1)).reason == "beyond_advance_window"


def test_doctor_without_schedule_is_not_an_error(db, seed) -> None:
    result = AvailabilityService(db).get_available_slots(
        seed.tenant_id, seed.other_doctor_id, NEXT_MONDAY, NOW
    )

    assert result.slots == []
    assert result.reason == "no_schedule"


def test_unknown_tenant_is_not_found(db, seed) -> None:
    with pytest.raises(NotFoundError):
        AvailabilityService(db).get_available_slots(9999, seed.doctor_id, NEXT_MONDAY, NOW)


def test_full_slots_are_hidden_and_inactive_bookings_ignored(db, seed, make_appointment) -> None:
    make_appointment(NEXT_MONDAY, "09:00", 0, slot_ordinal=0)
    make_appointment(NEXT_MONDAY, "09:00", 1, slot_ordinal=1)
    make_appointment(NEXT_MONDAY, "09:30", 2, slot_ordinal=0)
    make_appointment(NEXT_MONDAY, "10:00", 3, slot_ordinal=None, status="cancelled")
    make_appointment(NEXT_MONDAY, "10:00", 4, slot_ordinal=None, status="no-show")

    result = _slots(db, seed, NEXT_MONDAY)

    assert "09:00" not in result.slots
    assert "09:30" in result.slots
    assert "10:00" in result.slots


def test_same_day_lead_time(db, seed) -> None:
    # 08:59 -> 09:30 is 31 minutes away, 09:00 only 1 minute
    early = _slots(db, seed, MONDAY, now=at(MONDAY, "08:59"))
    assert "09:00" not in early.slots
    assert early.slots[0] == "09:30"

    # 09:01 -> 09:30 is 29 minutes away
    late = _slots(db, seed, MONDAY, now=at(MONDAY, "09:01"))
    assert late.slots[0] == "10:00"

    # exactly 30 minutes is enough
    exact = _slots(db, seed, MONDAY, now=at(MONDAY, "09:00"))
    assert exact.slots[0] == "09:30"


def test_lead_time_is_configurable(db, seed) -> None:
    result = _slots(db, seed, MONDAY, now=at(MONDAY, "08:59"), lead_minutes=0)
    assert result.slots[0] == "09:00"


def test_today_is_taken_from_clinic_timezone(db, seed) -> None:
    tenant = db.query(Tenant).filter(Tenant.id == seed.tenant_id).one()
    tenant.timezone = "Asia/Kolkata"
    db.commit()

    # Monday 20:00 UTC is already Tuesday 01:30 in India
    now = datetime(2026, 3, 2, 20, 0, tzinfo=timezone.utc)

    assert _slots(db, seed, MONDAY, now=now).reason == "in_the_past"
    assert len(_slots(db, seed, MONDAY + timedelta(days=1), now=now).slots) == 16


def test_output_is_sorted_even_if_stored_windows_are_not(db, seed) -> None:
    schedule = _schedule(db, seed)
    schedule.weekly_schedule = [
        {
            "day": "monday",
            "isWorking": True,
            "slots": [
                {"startTime": "14:00", "endTime": "15:00"},
                {"startTime": "09:00", "endTime": "10:00"},
            ],
        }
    ]
    db.commit()

    assert _slots(db, seed, NEXT_MONDAY).slots == ["09:00", "09:30", "14:00", "14:30"]


def test_public_slots_require_online_booking(db, seed) -> None:
    service = AvailabilityService(db)

    assert service.get_public_available_slots("Sunrise", seed.doctor_id, NEXT_MONDAY, NOW).slots

    _schedule(db, seed).accepts_online_booking = False
    db.commit()

    result = service.get_public_available_slots("sunrise", seed.doctor_id, NEXT_MONDAY, NOW)
    assert result.slots == []
    assert result.reason == "online_booking_disabled"


def test_public_slots_unknown_slug(db, seed) -> None:
    with pytest.raises(NotFoundError) as exc:
        AvailabilityService(db).get_public_available_slots("nowhere", seed.doctor_id, NEXT_MONDAY, NOW)

    assert exc.value.code == "clinic_not_found"
