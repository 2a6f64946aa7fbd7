"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...shared.validators import parse_hhmm, validate_email, validate_hhmm, validate_phone

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_WEEKDAY_ALIASES = {name[:3]: name for name in WEEKDAYS}

AppointmentStatus = Literal[
    "scheduled", "checked-in", "in-progress", "completed", "cancelled", "no-show"
]
AppointmentType = Literal[
    "consultation", "follow-up", "procedure", "emergency", "routine-checkup", "vaccination"
]
Priority = Literal["normal", "urgent", "emergency"]


def normalize_weekday(value: str) -> str:
    """Map "Monday", " MON " etc. onto the fixed lower-case weekday names"""
    key = (value or "").strip().lower()
    key = _WEEKDAY_ALIASES.get(key, key)
    if key not in WEEKDAYS:
        raise ValueError(f"Unknown weekday '{value}'")
    return key


# ============================================================================
# SCHEDULE MODEL
# ============================================================================


class TimeWindow(BaseModel):
    """A working window within one day, [startTime, endTime)"""

    startTime: str
    endTime: str

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v):
        return validate_hhmm(v)

    @model_validator(mode="after")
    def check_order(self):
        if parse_hhmm(self.startTime) >= parse_hhmm(self.endTime):
            raise ValueError(
                f"Window start {self.startTime} must be before end {self.endTime}"
            )
        return self

    @property
    def start_minutes(self) -> int:
        return parse_hhmm(self.startTime)

    @property
    def end_minutes(self) -> int:
        return parse_hhmm(self.endTime)


class DaySchedule(BaseModel):
    day: str
    isWorking: bool = True
    slots: list[TimeWindow] = []

    @field_validator("day")
    @classmethod
    def validate_day(cls, v):
        return normalize_weekday(v)


class LeaveDate(BaseModel):
    date: date
    reason: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def truncate_timestamp(cls, v):
        # Leave dates are compared by calendar day; drop any time part
        if isinstance(v, str) and len(v) > 10:
            return v[:10]
        if isinstance(v, datetime):
            return v.date()
        return v


def normalize_weekly_schedule(days: list[DaySchedule]) -> list[DaySchedule]:
    """
    Return exactly seven entries in Monday..Sunday order.

    Missing weekdays become non-working days. Windows are sorted by start time
    and must not overlap.
    """
    by_day: dict[str, DaySchedule] = {}
    for entry in days:
        if entry.day in by_day:
            raise ValueError(f"Weekday '{entry.day}' appears more than once")

        windows = sorted(entry.slots, key=lambda w: w.start_minutes)
        for previous, current in zip(windows, windows[1:]):
            if current.start_minutes < previous.end_minutes:
                raise ValueError(
                    f"Overlapping windows on {entry.day}: "
                    f"{previous.startTime}-{previous.endTime} and "
                    f"{current.startTime}-{current.endTime}"
                )
        by_day[entry.day] = DaySchedule(day=entry.day, isWorking=entry.isWorking, slots=windows)

    return [by_day.get(name) or DaySchedule(day=name, isWorking=False, slots=[]) for name in WEEKDAYS]


def default_weekly_schedule() -> list[DaySchedule]:
    """Mon-Fri 09:00-13:00 and 14:00-18:00, Saturday mornings, Sunday off"""
    split_day = [
        TimeWindow(startTime="09:00", endTime="13:00"),
        TimeWindow(startTime="14:00", endTime="18:00"),
    ]
    days = [DaySchedule(day=name, slots=split_day) for name in WEEKDAYS[:5]]
    days.append(DaySchedule(day="saturday", slots=[TimeWindow(startTime="09:00", endTime="13:00")]))
    days.append(DaySchedule(day="sunday", isWorking=False, slots=[]))
    return days


def load_weekly_schedule(raw: list) -> list[DaySchedule]:
    """Rebuild the stored JSON template into validated day entries"""
    return [DaySchedule.model_validate(entry) for entry in (raw or [])]


class DoctorScheduleCreate(BaseModel):
    """Schema for creating (or replacing fields of) a doctor's schedule"""

    doctorId: int
    weeklySchedule: Optional[list[DaySchedule]] = None
    slotDuration: int = Field(30, gt=0, le=480)
    bufferTime: int = Field(0, ge=0, le=240)
    maxPatientsPerSlot: int = Field(1, ge=1, le=50)
    advanceBookingDays: int = Field(30, ge=0, le=365)
    isAcceptingAppointments: bool = True
    acceptsOnlineBooking: bool = False
    consultationFee: float = Field(0, ge=0)
    specialization: Optional[str] = None
    qualifications: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=1000)
    leaveDates: list[LeaveDate] = []

    @field_validator("weeklySchedule")
    @classmethod
    def validate_weekly_schedule(cls, v):
        if v is None:
            return v
        return normalize_weekly_schedule(v)


class DoctorScheduleUpdate(BaseModel):
    """Partial update; only the listed fields may change"""

    weeklySchedule: Optional[list[DaySchedule]] = None
    slotDuration: Optional[int] = Field(None, gt=0, le=480)
    bufferTime: Optional[int] = Field(None, ge=0, le=240)
    maxPatientsPerSlot: Optional[int] = Field(None, ge=1, le=50)
    advanceBookingDays: Optional[int] = Field(None, ge=0, le=365)
    isAcceptingAppointments: Optional[bool] = None
    acceptsOnlineBooking: Optional[bool] = None
    consultationFee: Optional[float] = Field(None, ge=0)
    specialization: Optional[str] = None
    qualifications: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=1000)
    leaveDates: Optional[list[LeaveDate]] = None

    @field_validator("weeklySchedule")
    @classmethod
    def validate_weekly_schedule(cls, v):
        if v is None:
            return v
        return normalize_weekly_schedule(v)


class DoctorScheduleResponse(BaseModel):
    id: int
    doctorId: int
    doctorName: Optional[str] = None
    weeklySchedule: list[DaySchedule]
    slotDuration: int
    bufferTime: int
    maxPatientsPerSlot: int
    advanceBookingDays: int
    isAcceptingAppointments: bool
    acceptsOnlineBooking: bool
    consultationFee: float
    specialization: Optional[str] = None
    qualifications: Optional[str] = None
    bio: Optional[str] = None
    leaveDates: list[LeaveDate]


# ============================================================================
# AVAILABILITY
# ============================================================================


class AvailableSlotsResponse(BaseModel):
    date: date
    doctorId: int
    slots: list[str]
    slotDurationMinutes: int
    reason: Optional[str] = None
    message: Optional[str] = None


# ============================================================================
# APPOINTMENTS
# ============================================================================


class AppointmentCreate(BaseModel):
    patientId: int
    doctorId: int
    appointmentDate: date
    startTime: str
    type: AppointmentType = "consultation"
    reason: Optional[str] = None
    notes: Optional[str] = None
    priority: Priority = "normal"

    @field_validator("startTime")
    @classmethod
    def validate_start_time(cls, v):
        return validate_hhmm(v)


class AppointmentReschedule(BaseModel):
    appointmentDate: date
    startTime: str

    @field_validator("startTime")
    @classmethod
    def validate_start_time(cls, v):
        return validate_hhmm(v)


class AppointmentUpdate(BaseModel):
    """Details that can change without touching the slot, the token or the status"""

    type: Optional[AppointmentType] = None
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=2000)
    priority: Optional[Priority] = None


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    cancellationReason: Optional[str] = None


class WalkInCreate(BaseModel):
    patientId: int
    doctorId: int
    type: AppointmentType = "consultation"
    reason: Optional[str] = None
    priority: Priority = "normal"


class AppointmentResponse(BaseModel):
    id: int
    publicId: str
    doctorId: int
    patientId: int
    appointmentDate: date
    startTime: str
    endTime: Optional[str] = None
    duration: int
    type: str
    status: str
    priority: str
    reason: Optional[str] = None
    notes: Optional[str] = None
    tokenNumber: Optional[int] = None
    tokenDisplayNumber: Optional[str] = None
    estimatedWaitMinutes: Optional[int] = None
    checkedInAt: Optional[datetime] = None
    cancelledAt: Optional[datetime] = None
    cancellationReason: Optional[str] = None

    @classmethod
    def from_model(cls, appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            publicId=appointment.public_id,
            doctorId=appointment.doctor_id,
            patientId=appointment.patient_id,
            appointmentDate=appointment.appointment_date,
            startTime=appointment.start_time,
            endTime=appointment.end_time,
            duration=appointment.duration,
            type=appointment.type,
            status=appointment.status,
            priority=appointment.priority,
            reason=appointment.reason,
            notes=appointment.notes,
            tokenNumber=appointment.token_number,
            tokenDisplayNumber=appointment.token_display_number,
            estimatedWaitMinutes=appointment.estimated_wait_minutes,
            checkedInAt=appointment.checked_in_at,
            cancelledAt=appointment.cancelled_at,
            cancellationReason=appointment.cancellation_reason,
        )


class AppointmentListResponse(BaseModel):
    data: list[AppointmentResponse]
    page: int
    limit: int
    total: int
    pages: int


# ============================================================================
# TOKEN QUEUE
# ============================================================================


class CheckInResponse(BaseModel):
    appointmentId: int
    tokenNumber: int
    tokenDisplayNumber: str
    estimatedWaitMinutes: int


class QueueEntry(BaseModel):
    appointmentId: int
    tokenNumber: int
    tokenDisplayNumber: str
    status: str
    patientName: Optional[str] = None
    doctorId: int
    doctorName: Optional[str] = None
    startTime: str
    estimatedWaitMinutes: Optional[int] = None


class QueueStatusResponse(BaseModel):
    date: date
    doctorId: Optional[int] = None
    currentServing: Optional[QueueEntry] = None
    nextToken: Optional[QueueEntry] = None
    waitingQueue: list[QueueEntry]
    waitingCount: int
    completedCount: int
    totalCheckedIn: int


class TokenLookupResponse(BaseModel):
    appointmentId: int
    tokenNumber: int
    tokenDisplayNumber: str
    status: str
    appointmentDate: date
    startTime: str
    patientName: Optional[str] = None
    doctorName: Optional[str] = None
    estimatedWaitMinutes: Optional[int] = None
    checkedInAt: Optional[datetime] = None
    queuePosition: Optional[int] = None
    currentServingToken: Optional[str] = None


# ============================================================================
# PUBLIC BOOKING
# ============================================================================


class PublicBookingCreate(BaseModel):
    """Schema for unauthenticated booking from the clinic's booking page"""

    slug: str
    doctorId: int
    date: date
    time: str
    patientName: str = Field(..., min_length=1, max_length=255)
    patientEmail: Optional[str] = None
    patientPhone: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        return validate_hhmm(v)

    @field_validator("patientEmail")
    @classmethod
    def validate_patient_email(cls, v):
        return validate_email(v)

    @field_validator("patientPhone")
    @classmethod
    def validate_patient_phone(cls, v):
        return validate_phone(v)


class PublicDoctor(BaseModel):
    id: int
    name: str
    specialization: Optional[str] = None
    qualifications: Optional[str] = None
    bio: Optional[str] = None
    consultationFee: float
    slotDuration: int
    advanceBookingDays: int


class PublicClinicResponse(BaseModel):
    name: str
    requireEmail: bool
    requirePhoneNumber: bool
    doctors: list[PublicDoctor]


class PublicBookingResponse(BaseModel):
    appointmentId: str
    confirmationMessage: str
    date: date
    time: str
    endTime: Optional[str] = None
    duration: int
