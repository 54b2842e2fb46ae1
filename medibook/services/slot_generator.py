"""Materialize doctor-declared windows into availability slots and sub-slots."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from medibook.models.availability import (
    AppointmentSubSlot,
    AvailabilitySlot,
    ScheduleType,
    SubSlotStatus,
)
from medibook.models.doctor import Doctor
from medibook.schemas import SlotCreateRequest
from medibook.services import availability_cache
from medibook.services.db import session_scope
from medibook.services.errors import ConflictError, NotFoundError, ValidationError
from medibook.utils.config import Settings, get_settings
from medibook.utils.timegrid import minutes_to_time, time_to_minutes

LOGGER = logging.getLogger(__name__)


def calculate_total_capacity(start_time: str, end_time: str, sub_slot_duration: int) -> int:
    """Number of whole sub-slot durations that fit in the window."""

    return (time_to_minutes(end_time) - time_to_minutes(start_time)) // sub_slot_duration


def windows_overlap(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    """True when the two windows share at least one minute.

    Abutting windows (one ends exactly where the other starts) do not overlap.
    """

    return (
        (start_b <= start_a < end_b)
        or (start_b < end_a <= end_b)
        or (start_a <= start_b and end_a >= end_b)
    )


def find_overlapping_slot(
    session: Session,
    doctor_id: int,
    day: date,
    start_time: str,
    end_time: str,
    *,
    exclude_slot_id: Optional[int] = None,
) -> Optional[AvailabilitySlot]:
    stmt = select(AvailabilitySlot).where(
        AvailabilitySlot.doctor_id == doctor_id,
        AvailabilitySlot.date == day,
    )
    if exclude_slot_id is not None:
        stmt = stmt.where(AvailabilitySlot.id != exclude_slot_id)

    for existing in session.scalars(stmt):
        if windows_overlap(start_time, end_time, existing.start_time, existing.end_time):
            return existing
    return None


def build_sub_slots(
    slot: AvailabilitySlot,
    *,
    skip_start_times: frozenset = frozenset(),
) -> List[AppointmentSubSlot]:
    """Walk the slot window in ``sub_slot_duration`` steps.

    Each full step becomes a bookable sub-slot of capacity one. A trailing
    partial step is clamped to ``end_time`` and kept as an inactive,
    zero-capacity sub-slot so capacities sum to ``total_capacity``.
    """

    start = time_to_minutes(slot.start_time)
    end = time_to_minutes(slot.end_time)
    duration = slot.sub_slot_duration

    sub_slots: List[AppointmentSubSlot] = []
    for current in range(start, end, duration):
        sub_end = min(current + duration, end)
        start_label = minutes_to_time(current)
        if start_label in skip_start_times:
            continue
        partial = sub_end - current < duration
        sub_slots.append(
            AppointmentSubSlot(
                start_time=start_label,
                end_time=minutes_to_time(sub_end),
                max_capacity=0 if partial else slot.capacity_per_sub_slot,
                current_bookings=0,
                status=SubSlotStatus.INACTIVE if partial else SubSlotStatus.AVAILABLE,
            )
        )
    return sub_slots


def materialize_sub_slots(slot: AvailabilitySlot, **kwargs) -> None:
    """Attach a fresh sub-slot grid to wave slots. Stream slots carry none."""

    if slot.schedule_type != ScheduleType.WAVE:
        return
    slot.sub_slots.extend(build_sub_slots(slot, **kwargs))


class SlotGenerator:
    """Create availability slots for a doctor, singly or over a recurring range."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    def create_availability_slot(
        self,
        doctor_id: int,
        request: SlotCreateRequest,
        *,
        now: Optional[datetime] = None,
    ) -> Union[AvailabilitySlot, List[AvailabilitySlot]]:
        """Create one slot, or one per matching weekday for recurring requests."""

        now = now or datetime.now()

        if request.is_recurring:
            if not request.weekdays or not request.end_date:
                raise ValidationError("Weekdays and end_date are required for recurring schedules.")
            return self._create_recurring_slots(doctor_id, request, now)

        if request.date is None:
            raise ValidationError("Date is required for a single availability slot.")

        with session_scope(self._session_factory) as session:
            doctor = self._load_doctor(session, doctor_id)
            slot = self._create_single_slot(session, doctor, request, request.date, now)

        availability_cache.invalidate(doctor_id, [slot.date])
        return slot

    def _create_recurring_slots(
        self,
        doctor_id: int,
        request: SlotCreateRequest,
        now: datetime,
    ) -> List[AvailabilitySlot]:
        current = request.date or now.date()
        weekdays = set(request.weekdays or [])

        with session_scope(self._session_factory) as session:
            self._load_doctor(session, doctor_id)

        created: List[AvailabilitySlot] = []
        while current <= request.end_date:
            if current.strftime("%A") in weekdays:
                try:
                    with session_scope(self._session_factory) as session:
                        doctor = self._load_doctor(session, doctor_id)
                        created.append(self._create_single_slot(session, doctor, request, current, now))
                except (ValidationError, ConflictError) as exc:
                    LOGGER.warning("Skipping recurring slot: doctor=%s date=%s reason=%s", doctor_id, current, exc)
            current += timedelta(days=1)

        if not created:
            raise ConflictError("No recurring slots were created. Check your inputs.")

        LOGGER.info("Created %s recurring slots for doctor=%s", len(created), doctor_id)
        availability_cache.invalidate(doctor_id, [slot.date for slot in created])
        return created

    def _create_single_slot(
        self,
        session: Session,
        doctor: Doctor,
        request: SlotCreateRequest,
        day: date,
        now: datetime,
    ) -> AvailabilitySlot:
        if day < now.date():
            raise ValidationError("Cannot create availability for past dates")
        if request.start_time >= request.end_time:
            raise ValidationError("Start time must be before end time")

        clash = find_overlapping_slot(session, doctor.id, day, request.start_time, request.end_time)
        if clash is not None:
            raise ConflictError("Time slot overlaps with existing availability")

        duration = (
            request.sub_slot_duration
            or doctor.default_slot_duration
            or self._settings.default_sub_slot_duration
        )
        total_capacity = calculate_total_capacity(request.start_time, request.end_time, duration)
        if total_capacity < 1:
            raise ValidationError("Window is shorter than one sub-slot duration")

        slot = AvailabilitySlot(
            doctor_id=doctor.id,
            date=day,
            start_time=request.start_time,
            end_time=request.end_time,
            schedule_type=request.schedule_type or doctor.default_schedule_type,
            sub_slot_duration=duration,
            capacity_per_sub_slot=1,
            total_capacity=total_capacity,
            current_bookings=0,
            consultation_type=request.consultation_type,
            is_active=True,
            notes=request.notes,
            sub_slots=[],
        )
        session.add(slot)
        session.flush()

        materialize_sub_slots(slot)
        session.flush()

        LOGGER.info(
            "Created %s slot %s for doctor=%s on %s %s-%s (capacity=%s)",
            slot.schedule_type.value,
            slot.id,
            doctor.id,
            day,
            slot.start_time,
            slot.end_time,
            total_capacity,
        )
        return slot

    @staticmethod
    def _load_doctor(session: Session, doctor_id: int) -> Doctor:
        doctor = session.get(Doctor, doctor_id)
        if doctor is None:
            raise NotFoundError("Doctor not found")
        return doctor
