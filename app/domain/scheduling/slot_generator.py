"""
Slot generation - turns one day of a weekly template into bookable start times.

Pure functions, no I/O. Windows are walked in the order given; schedules are
sorted when they are saved, so a stored template always yields ascending slots.
"""

from datetime import date
from typing import Optional

from ...shared.validators import format_minutes, parse_hhmm
from .schemas import WEEKDAYS, DaySchedule


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def find_day_schedule(weekly_schedule: list[DaySchedule], day: date) -> Optional[DaySchedule]:
    name = weekday_name(day)
    for entry in weekly_schedule:
        if entry.day == name:
            return entry
    return None


def generate_slot_minutes(
    day_schedule: Optional[DaySchedule], slot_duration: int, buffer_time: int
) -> list[int]:
    """Slot start times as minutes since midnight"""
    if slot_duration <= 0:
        raise ValueError("slot_duration must be positive")
    if buffer_time < 0:
        raise ValueError("buffer_time cannot be negative")

    if day_schedule is None or not day_schedule.isWorking:
        return []

    step = slot_duration + buffer_time
    starts = []
    for window in day_schedule.slots:
        cursor = window.start_minutes
        while cursor + slot_duration <= window.end_minutes:
            starts.append(cursor)
            cursor += step
    return starts


def generate_slots(
    day_schedule: Optional[DaySchedule], slot_duration: int, buffer_time: int
) -> list[str]:
    """
    Generate "HH:MM" slot start times for a day.

    Within each window a cursor starts at the window start and emits a slot
    while ``cursor + slot_duration <= window end``, advancing by
    ``slot_duration + buffer_time``. A window shorter than one slot contributes
    nothing; a non-working day or one without windows yields an empty list.
    """
    return [format_minutes(m) for m in generate_slot_minutes(day_schedule, slot_duration, buffer_time)]


def slot_end_time(start_time: str, slot_duration: int) -> str:
    """End of a slot as "HH:MM", clamped to 23:59"""
    return format_minutes(min(parse_hhmm(start_time) + slot_duration, 23 * 60 + 59))
