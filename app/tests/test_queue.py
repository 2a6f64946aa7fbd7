from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app.domain.scheduling.exceptions import NotFoundError, SchedulingValidationError
from app.domain.scheduling.queue_service import QueueService, format_token
from app.domain.scheduling.schemas import WalkInCreate
from app.models_appointment import Appointment

from conftest import MONDAY, NOW, at


@pytest.fixture
def todays(make_appointment):
    """Five scheduled appointments for today, one per slot"""
    return [make_appointment(MONDAY, f"{9 + i:02d}:00", i) for i in range(5)]


def _check_in_all(db, seed, appointments, service=None):
    service = service or QueueService(db)
    return [service.check_in(seed.tenant_id, a.id, NOW) for a in appointments]


def test_format_token() -> None:
    assert format_token(7) == "T-007"
    assert format_token(123) == "T-123"


def test_check_in_assigns_sequential_tokens_and_waits(db, seed, todays) -> None:
    notifier = MagicMock()
    first, second, third = _check_in_all(db, seed, todays[:3], QueueService(db, notifier=notifier))

    assert [a.token_number for a in (first, second, third)] == [1, 2, 3]
    assert third.token_display_number == "T-003"
    assert [a.estimated_wait_minutes for a in (first, second, third)] == [0, 15, 30]
    assert first.status == "checked-in"
    assert first.checked_in_at is not None
    assert notifier.notify_checked_in.call_count == 3


def test_repeated_check_in_keeps_token(db, seed, todays) -> None:
    service = QueueService(db)
    first = service.check_in(seed.tenant_id, todays[0].id, NOW)
    again = service.check_in(seed.tenant_id, todays[0].id, NOW)

    assert again.token_number == first.token_number == 1
    assert db.query(Appointment).filter(Appointment.token_number.isnot(None)).count() == 1


def test_check_in_only_for_today(db, seed, make_appointment) -> None:
    tomorrow = make_appointment(MONDAY + timedelta(days=1), "09:00")

    with pytest.raises(SchedulingValidationError) as exc:
        QueueService(db).check_in(seed.tenant_id, tomorrow.id, NOW)

    assert exc.value.code == "invalid_date"


def test_cancelled_appointment_cannot_check_in(db, seed, make_appointment) -> None:
    cancelled = make_appointment(MONDAY, "09:00", status="cancelled", slot_ordinal=None)

    with pytest.raises(SchedulingValidationError) as exc:
        QueueService(db).check_in(seed.tenant_id, cancelled.id, NOW)

    assert exc.value.code == "invalid_transition"


def test_concurrent_check_ins_get_contiguous_tokens(session_factory, seed, make_appointment) -> None:
    appointment_ids = [
        make_appointment(MONDAY, f"{9 + i // 2:02d}:{30 * (i % 2):02d}", i % 5).id for i in range(8)
    ]

    def check_in(appointment_id: int) -> int:
        session = session_factory()
        try:
            return QueueService(session).check_in(seed.tenant_id, appointment_id, NOW).token_number
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        tokens = list(pool.map(check_in, appointment_ids))

    assert sorted(tokens) == list(range(1, 9))


def _in_other_session(session_factory, action):
    session = session_factory()
    try:
        return action(QueueService(session))
    finally:
        session.close()


def test_check_in_already_done_elsewhere_keeps_first_token(db, session_factory, seed, todays) -> None:
    appointment = todays[0]
    db.refresh(appointment)  # held as "scheduled" by this session
    _in_other_session(session_factory, lambda s: s.check_in(seed.tenant_id, appointment.id, NOW))

    notifier = MagicMock()
    service = QueueService(db, notifier=notifier)
    result = service.check_in(seed.tenant_id, appointment.id, NOW)

    assert result.token_number == 1
    held = [t for (t,) in db.query(Appointment.token_number).filter(Appointment.token_number.isnot(None))]
    assert held == [1]
    assert service.lookup_by_token(seed.tenant_id, MONDAY, "T-001")["appointmentId"] == appointment.id
    notifier.notify_checked_in.assert_not_called()


def test_check_in_does_not_revive_cancelled_appointment(db, session_factory, seed, todays) -> None:
    appointment = todays[0]
    db.refresh(appointment)
    _in_other_session(
        session_factory, lambda s: s.update_status(seed.tenant_id, appointment.id, "cancelled", now=NOW)
    )

    with pytest.raises(SchedulingValidationError) as exc:
        QueueService(db).check_in(seed.tenant_id, appointment.id, NOW)

    assert exc.value.code == "invalid_transition"
    db.refresh(appointment)
    assert appointment.status == "cancelled"
    assert appointment.token_number is None


def test_status_change_checks_committed_status(db, session_factory, seed, todays) -> None:
    appointment = todays[0]
    db.refresh(appointment)

    def serve(service: QueueService) -> None:
        service.check_in(seed.tenant_id, appointment.id, NOW)
        service.update_status(seed.tenant_id, appointment.id, "in-progress", now=NOW)

    _in_other_session(session_factory, serve)

    # in-progress cannot be cancelled, whatever this session last saw
    with pytest.raises(SchedulingValidationError) as exc:
        QueueService(db).update_status(seed.tenant_id, appointment.id, "cancelled", now=NOW)

    assert exc.value.code == "invalid_transition"


def test_walk_in_joins_queue_without_a_seat(db, seed, todays) -> None:
    QueueService(db).check_in(seed.tenant_id, todays[0].id, NOW)

    walk_in = QueueService(db).create_walk_in(
        seed.tenant_id,
        WalkInCreate(patientId=seed.patient_ids[4], doctorId=seed.doctor_id),
        at(MONDAY, "10:17"),
    )

    assert walk_in.status == "checked-in"
    assert walk_in.token_display_number == "T-002"
    assert walk_in.estimated_wait_minutes == 15
    assert walk_in.start_time == "10:17"
    assert walk_in.end_time == "10:47"
    assert walk_in.slot_ordinal is None
    assert walk_in.reason == "Walk-in"


def test_walk_in_for_doctor_without_schedule(db, seed) -> None:
    walk_in = QueueService(db).create_walk_in(
        seed.tenant_id,
        WalkInCreate(patientId=seed.patient_ids[0], doctorId=seed.other_doctor_id, reason="Cough"),
        NOW,
    )

    assert walk_in.duration == 30
    assert walk_in.token_number == 1


# ============================================================================
# STATUS TRANSITIONS
# ============================================================================


def test_consultation_workflow(db, seed, todays) -> None:
    service = QueueService(db)
    appointment = service.check_in(seed.tenant_id, todays[0].id, NOW)

    serving = service.update_status(seed.tenant_id, appointment.id, "in-progress", now=at(MONDAY, "09:05"))
    assert serving.serving_started_at is not None
    assert serving.called_at is not None
    assert serving.estimated_wait_minutes == 0

    done = service.update_status(seed.tenant_id, appointment.id, "completed", now=at(MONDAY, "09:20"))
    assert done.completed_at is not None


@pytest.mark.parametrize(
    "start,target",
    [
        ("scheduled", "completed"),
        ("scheduled", "in-progress"),
        ("completed", "cancelled"),
        ("cancelled", "scheduled"),
        ("no-show", "checked-in"),
    ],
)
def test_invalid_transitions_are_rejected(db, seed, make_appointment, start, target) -> None:
    appointment = make_appointment(MONDAY, "09:00", status=start, slot_ordinal=None)

    with pytest.raises(SchedulingValidationError) as exc:
        QueueService(db).update_status(seed.tenant_id, appointment.id, target, now=NOW)

    assert exc.value.code == "invalid_transition"


def test_cancel_stamps_reason_and_notifies(db, seed, todays) -> None:
    notifier = MagicMock()
    cancelled = QueueService(db, notifier=notifier).update_status(
        seed.tenant_id, todays[0].id, "cancelled", now=NOW
    )

    assert cancelled.cancellation_reason == "Cancelled by clinic"
    assert cancelled.cancelled_at is not None
    assert cancelled.slot_ordinal is None
    notifier.notify_cancelled.assert_called_once_with(cancelled, "Cancelled by clinic")


def test_leaving_queue_refreshes_waits(db, seed, todays) -> None:
    service = QueueService(db)
    first, second, third = _check_in_all(db, seed, todays[:3], service)

    service.update_status(seed.tenant_id, first.id, "in-progress", now=NOW)

    db.refresh(second)
    db.refresh(third)
    assert second.estimated_wait_minutes == 0
    assert third.estimated_wait_minutes == 15


def test_unknown_appointment(db, seed) -> None:
    with pytest.raises(NotFoundError):
        QueueService(db).update_status(seed.tenant_id, 4242, "cancelled", now=NOW)


# ============================================================================
# QUEUE STATUS
# ============================================================================


def test_queue_status(db, seed, todays) -> None:
    service = QueueService(db)
    appointments = _check_in_all(db, seed, todays[:4], service)
    service.update_status(seed.tenant_id, appointments[0].id, "in-progress", now=NOW)
    service.update_status(seed.tenant_id, appointments[0].id, "completed", now=NOW)
    service.update_status(seed.tenant_id, appointments[1].id, "in-progress", now=NOW)

    status = service.get_queue_status(seed.tenant_id, MONDAY)

    assert status["currentServing"].tokenDisplayNumber == "T-002"
    assert [e.tokenNumber for e in status["waitingQueue"]] == [3, 4]
    assert [e.estimatedWaitMinutes for e in status["waitingQueue"]] == [0, 15]
    assert status["nextToken"].tokenNumber == 3
    assert status["waitingQueue"][0].patientName == "Patient2 Test"
    assert status["waitingCount"] == 2
    assert status["completedCount"] == 1
    assert status["totalCheckedIn"] == 4


def test_queue_status_defaults_to_today_and_filters_doctor(db, seed, todays) -> None:
    service = QueueService(db)
    _check_in_all(db, seed, todays[:2], service)

    assert service.get_queue_status(seed.tenant_id, now=NOW)["waitingCount"] == 2
    assert service.get_queue_status(seed.tenant_id, MONDAY, seed.other_doctor_id)["waitingCount"] == 0


def test_refresh_wait_times_is_idempotent(db, seed, todays) -> None:
    service = QueueService(db)
    appointments = _check_in_all(db, seed, todays[:3], service)
    for appointment in appointments:
        appointment.estimated_wait_minutes = 99
    db.commit()

    assert service.refresh_wait_times(seed.tenant_id, MONDAY) == 3
    first = [a.estimated_wait_minutes for a in appointments]
    assert service.refresh_wait_times(seed.tenant_id, MONDAY) == 3
    second = [a.estimated_wait_minutes for a in appointments]

    assert first == second == [0, 15, 30]


# ============================================================================
# TOKEN LOOKUP
# ============================================================================


def test_lookup_by_token(db, seed, todays) -> None:
    service = QueueService(db)
    appointments = _check_in_all(db, seed, todays[:3], service)

    found = service.lookup_by_token(seed.tenant_id, MONDAY, "t-003")

    assert found["appointmentId"] == appointments[2].id
    assert found["tokenNumber"] == 3
    assert found["queuePosition"] == 3
    assert found["estimatedWaitMinutes"] == 30
    assert found["currentServingToken"] is None


def test_lookup_missing_token(db, seed, todays) -> None:
    _check_in_all(db, seed, todays[:2])

    with pytest.raises(NotFoundError):
        QueueService(db).lookup_by_token(seed.tenant_id, MONDAY, "T-003")


def test_public_token_lookup(db, seed, todays) -> None:
    service = QueueService(db)
    first, second = _check_in_all(db, seed, todays[:2], service)
    service.update_status(seed.tenant_id, first.id, "in-progress", now=NOW)

    found = service.public_token_lookup("sunrise", "T-002", NOW)

    assert found["queuePosition"] == 1
    assert found["currentServingToken"] == "T-001"

    with pytest.raises(NotFoundError):
        service.public_token_lookup("unknown-clinic", "T-002", NOW)
