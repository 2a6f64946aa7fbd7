"""
Appointment Notification Service
Emits booking lifecycle events after the database commit.
Delivery happens in the ARQ worker; nothing here may fail or delay a booking.
"""

import asyncio
import logging
from datetime import date
from typing import Optional

from arq import create_pool
from fastapi import BackgroundTasks

logger = logging.getLogger(__name__)

NOTIFICATION_TASK = "send_appointment_notification_task"


def appointment_payload(appointment) -> dict:
    """JSON-safe snapshot of the fields a notification needs"""
    return {
        "appointment_id": appointment.id,
        "public_id": appointment.public_id,
        "tenant_id": appointment.tenant_id,
        "doctor_id": appointment.doctor_id,
        "patient_id": appointment.patient_id,
        "appointment_date": appointment.appointment_date.isoformat(),
        "start_time": appointment.start_time,
        "status": appointment.status,
        "token_display_number": appointment.token_display_number,
    }


async def enqueue_notification(event: str, payload: dict) -> bool:
    """Push a notification job onto the ARQ queue. Failures are logged, never raised."""
    from ..worker import get_redis_settings

    try:
        pool = await asyncio.wait_for(create_pool(get_redis_settings()), timeout=10.0)
        try:
            job = await pool.enqueue_job(NOTIFICATION_TASK, event, payload)
            logger.info(
                f"📋 Queued {event} notification for appointment {payload.get('appointment_id')}: "
                f"{job.job_id if job else 'duplicate'}"
            )
        finally:
            await pool.close()
        return True
    except Exception as e:
        logger.error(
            f"❌ Failed to queue {event} notification for appointment "
            f"{payload.get('appointment_id')}: {e}"
        )
        return False


class AppointmentNotifier:
    """
    Fire-and-forget notifier. Bound to a request's BackgroundTasks the jobs are
    queued after the response is sent; unbound, events are only logged.
    """

    def __init__(self, background_tasks: Optional[BackgroundTasks] = None):
        self.background_tasks = background_tasks

    def notify_booked(self, appointment) -> None:
        self._emit("appointment_booked", appointment_payload(appointment))

    def notify_cancelled(self, appointment, reason: Optional[str] = None) -> None:
        payload = appointment_payload(appointment)
        payload["reason"] = reason
        self._emit("appointment_cancelled", payload)

    def notify_rescheduled(self, appointment, old_date: date, old_time: str) -> None:
        payload = appointment_payload(appointment)
        payload["old_date"] = old_date.isoformat()
        payload["old_time"] = old_time
        self._emit("appointment_rescheduled", payload)

    def notify_checked_in(self, appointment) -> None:
        self._emit("appointment_checked_in", appointment_payload(appointment))

    def _emit(self, event: str, payload: dict) -> None:
        if self.background_tasks is None:
            logger.debug(f"No background runner bound - {event} notification not queued")
            return
        self.background_tasks.add_task(enqueue_notification, event, payload)


def notify_safely(send, *args, **kwargs) -> None:
    """Call a notifier method; a failing notifier never breaks the caller"""
    try:
        send(*args, **kwargs)
    except Exception as e:
        logger.error(f"❌ Notification dispatch failed ({getattr(send, '__name__', send)}): {e}")
