from __future__ import annotations

import asyncio
from unittest.mock import patch

from app.domain.scheduling.queue_service import QueueService
from app.worker import (
    WorkerSettings,
    refresh_queue_wait_times_task,
    send_appointment_notification_task,
)

from conftest import MONDAY, NOW


def test_worker_registers_tasks() -> None:
    assert send_appointment_notification_task in WorkerSettings.functions
    assert refresh_queue_wait_times_task in WorkerSettings.functions
    assert len(WorkerSettings.cron_jobs) == 1


def test_notification_task_resolves_recipient(session_factory, seed, make_appointment) -> None:
    appointment = make_appointment(MONDAY, "09:00", 2)
    payload = {"appointment_id": appointment.id, "tenant_id": seed.tenant_id}

    with patch("app.worker.SessionLocal", session_factory):
        result = asyncio.run(
            send_appointment_notification_task({"job_id": "j1"}, "appointment_booked", payload)
        )

    assert result == {
        "success": True,
        "event": "appointment_booked",
        "recipient": "patient2@example.com",
    }


def test_notification_task_for_deleted_appointment(session_factory, seed) -> None:
    with patch("app.worker.SessionLocal", session_factory):
        result = asyncio.run(
            send_appointment_notification_task(
                {}, "appointment_cancelled", {"appointment_id": 999, "tenant_id": seed.tenant_id}
            )
        )

    assert result["success"] is False
    assert result["reason"] == "appointment_not_found"


def test_refresh_task_recomputes_waits(db, session_factory, seed, make_appointment) -> None:
    appointments = [make_appointment(MONDAY, f"{9 + i:02d}:00", i) for i in range(3)]
    service = QueueService(db)
    for appointment in appointments:
        service.check_in(seed.tenant_id, appointment.id, NOW)
        appointment.estimated_wait_minutes = 99
    db.commit()

    with (
        patch("app.worker.SessionLocal", session_factory),
        patch("app.domain.scheduling.availability_service.utc_now", return_value=NOW),
    ):
        result = asyncio.run(refresh_queue_wait_times_task({}))

    assert result == {"success": True, "refreshed": 3}
    for appointment in appointments:
        db.refresh(appointment)
    assert [a.estimated_wait_minutes for a in appointments] == [0, 15, 30]
