"""Request and response payloads exchanged with the scheduling services."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from medibook.models.appointment import AppointmentStatus, CancelledBy
from medibook.models.availability import ConsultationType, ScheduleType, SubSlotStatus
from medibook.utils.timegrid import normalize_time

WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


def _optional_time(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return normalize_time(value)


class SlotCreateRequest(BaseModel):
    """Doctor-declared availability window, single-date or recurring."""

    date: Optional[dt.date] = None
    start_time: str
    end_time: str
    schedule_type: Optional[ScheduleType] = None
    sub_slot_duration: Optional[int] = Field(default=None, gt=0)
    consultation_type: ConsultationType = ConsultationType.IN_PERSON
    notes: Optional[str] = None

    is_recurring: bool = False
    end_date: Optional[dt.date] = None
    weekdays: Optional[List[str]] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: str) -> str:
        return normalize_time(value)

    @field_validator("weekdays")
    @classmethod
    def normalize_weekdays(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        normalized = [item.strip().capitalize() for item in value]
        unknown = [item for item in normalized if item not in WEEKDAY_NAMES]
        if unknown:
            raise ValueError(f"Unknown weekday(s): {', '.join(unknown)}")
        return normalized


class SlotUpdateRequest(BaseModel):
    """Partial update of an availability slot. Unset fields are left alone."""

    start_time: Optional[str] = None
    end_time: Optional[str] = None
    sub_slot_duration: Optional[int] = Field(default=None, gt=0)
    schedule_type: Optional[ScheduleType] = None
    consultation_type: Optional[ConsultationType] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[str]) -> Optional[str]:
        return _optional_time(value)


class BookingRequest(BaseModel):
    """Patient request to book a unit in an availability slot."""

    model_config = ConfigDict(populate_by_name=True)

    doctor_id: int = Field(validation_alias=AliasChoices("doctor_id", "doctorId"))
    availability_slot_id: int = Field(
        validation_alias=AliasChoices("availability_slot_id", "availabilitySlotId"),
    )
    preferred_time: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("preferred_time", "preferredTime"),
    )
    reason: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("reason", "appointment_reason"),
    )
    symptoms: Optional[str] = None
    consultation_type: Optional[ConsultationType] = Field(
        default=None,
        validation_alias=AliasChoices("consultation_type", "consultationType"),
    )

    @field_validator("preferred_time")
    @classmethod
    def normalize_preferred_time(cls, value: Optional[str]) -> Optional[str]:
        return _optional_time(value)


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    cancellation_type: Literal["doctor", "system"] = "doctor"


class PatientCancelRequest(BaseModel):
    reason: Optional[str] = None


class RescheduleRequest(BaseModel):
    """Move an appointment to a new slot (and optionally a preferred time)."""

    model_config = ConfigDict(populate_by_name=True)

    availability_slot_id: int = Field(
        validation_alias=AliasChoices("availability_slot_id", "availabilitySlotId"),
    )
    preferred_time: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("preferred_time", "preferredTime"),
    )
    reason: Optional[str] = None

    @field_validator("preferred_time")
    @classmethod
    def normalize_preferred_time(cls, value: Optional[str]) -> Optional[str]:
        return _optional_time(value)


class StatusUpdateRequest(BaseModel):
    status: Literal["confirmed", "completed", "no_show"]
    notes: Optional[str] = None


class SubSlotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    start_time: str
    end_time: str
    max_capacity: int
    current_bookings: int
    status: SubSlotStatus


class SlotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    date: dt.date
    start_time: str
    end_time: str
    schedule_type: ScheduleType
    sub_slot_duration: int
    capacity_per_sub_slot: int
    total_capacity: int
    current_bookings: int
    consultation_type: ConsultationType
    is_active: bool
    notes: Optional[str] = None
    sub_slots: List[SubSlotRead] = Field(default_factory=list)


class AppointmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_reference: str
    patient_id: int
    doctor_id: int
    availability_slot_id: Optional[int] = None
    sub_slot_id: Optional[int] = None
    appointment_date: dt.date
    appointment_time: str
    appointment_end_time: str
    duration: int
    status: AppointmentStatus
    booking_type: ScheduleType
    queue_position: Optional[int] = None
    consultation_type: ConsultationType
    consultation_fee: Optional[Decimal] = None
    appointment_reason: Optional[str] = None
    symptoms: Optional[str] = None
    notes: Optional[str] = None
    patient_confirmed: bool = False
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None
    cancelled_at: Optional[dt.datetime] = None
    original_appointment_id: Optional[int] = None
    rescheduled_to_appointment_id: Optional[int] = None


class AppointmentSummary(AppointmentRead):
    """Appointment with the cancel and reschedule affordances open to its patient."""

    can_cancel: bool = False
    can_reschedule: bool = False


class SubSlotAvailability(BaseModel):
    id: int
    start_time: str
    end_time: str
    available_spots: int
    max_capacity: int


class StreamPosition(BaseModel):
    start_time: str
    end_time: str
    position: int


class SlotAvailability(BaseModel):
    """Bookable view of one slot. Wave slots list sub-slots, stream slots a preview."""

    id: int
    start_time: str
    end_time: str
    schedule_type: ScheduleType
    sub_slot_duration: int
    consultation_type: ConsultationType
    total_capacity: int
    available_spots: int
    has_availability: bool
    available_sub_slots: List[SubSlotAvailability] = Field(default_factory=list)
    next_available_slots: List[StreamPosition] = Field(default_factory=list)


class DoctorSummary(BaseModel):
    id: int
    name: str
    specialization: Optional[str] = None
    consultation_fee: Optional[Decimal] = None
    clinic_address: Optional[str] = None


class AvailabilityView(BaseModel):
    doctor: DoctorSummary
    date: dt.date
    slots: List[SlotAvailability] = Field(default_factory=list)
