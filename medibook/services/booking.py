"""Patient booking into wave and stream availability slots."""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from medibook.models.appointment import Appointment, AppointmentStatus
from medibook.models.availability import AvailabilitySlot
from medibook.models.doctor import Doctor
from medibook.models.patient import Patient
from medibook.schemas import BookingRequest
from medibook.services import availability_cache
from medibook.services.capacity import adjust_slot_bookings, lock_slot
from medibook.services.db import session_scope
from medibook.services.errors import (
    BookingError,
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from medibook.services.strategies import Reservation, strategy_for
from medibook.utils.config import Settings, get_settings
from medibook.utils.timegrid import combine

LOGGER = logging.getLogger(__name__)

REFERENCE_PREFIX = "APT"
REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_LENGTH = 6


def generate_booking_reference() -> str:
    """Return a random reference such as ``APT7K2Q9Z``."""

    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH))
    return f"{REFERENCE_PREFIX}{suffix}"


def validate_booking_window(slot: AvailabilitySlot, doctor: Doctor, now: datetime) -> None:
    """Reject past slots and same-day slots inside the doctor's cutoff."""

    today = now.date()
    if slot.date < today:
        raise ValidationError("Cannot book availability on a past date")
    if slot.date == today:
        cutoff = combine(slot.date, slot.start_time) - timedelta(minutes=doctor.same_day_booking_cutoff)
        if now > cutoff:
            raise ValidationError(
                f"Same-day bookings must be made at least {doctor.same_day_booking_cutoff} minutes in advance"
            )


class BookingAllocator:
    """Reserve one unit of slot capacity per booking.

    Preconditions are read in their own short transaction. The reservation
    itself runs under the slot's exclusive lock: the slot is re-checked,
    the discipline's strategy picks the unit, the appointment is inserted
    and the slot counter is incremented. Any failure rolls all of it back.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    def book_appointment(
        self,
        patient_id: int,
        request: BookingRequest,
        *,
        now: Optional[datetime] = None,
    ) -> Appointment:
        now = now or datetime.now()

        with session_scope(self._session_factory) as session:
            slot = self.check_preconditions(session, patient_id, request, now)
            doctor_id, slot_date = slot.doctor_id, slot.date

        try:
            with session_scope(self._session_factory) as session:
                appointment = self.allocate(session, patient_id, request)
        except BookingError as exc:
            LOGGER.warning(
                "Booking rolled back: patient=%s slot=%s reason=%s",
                patient_id,
                request.availability_slot_id,
                exc.message,
            )
            raise
        except Exception as exc:
            LOGGER.exception(
                "Unexpected booking failure: patient=%s slot=%s",
                patient_id,
                request.availability_slot_id,
            )
            raise InternalError("Failed to book appointment") from exc

        availability_cache.invalidate(doctor_id, [slot_date])
        return appointment

    def check_preconditions(
        self,
        session: Session,
        patient_id: int,
        request: BookingRequest,
        now: datetime,
    ) -> AvailabilitySlot:
        """Validate a booking before any lock is taken. Returns the target slot."""

        if session.get(Patient, patient_id) is None:
            raise NotFoundError("Patient not found")

        slot = session.get(AvailabilitySlot, request.availability_slot_id)
        if slot is None or slot.doctor_id != request.doctor_id or not slot.is_active:
            raise NotFoundError("Availability slot not found or inactive")

        validate_booking_window(slot, slot.doctor, now)

        if slot.is_full:
            raise ConflictError("This availability is fully booked. Choose another slot.")
        return slot

    def allocate(
        self,
        session: Session,
        patient_id: int,
        request: BookingRequest,
    ) -> Appointment:
        """Claim a unit and insert the appointment inside the caller's transaction."""

        slot = lock_slot(session, request.availability_slot_id)
        if slot is None or not slot.is_active:
            raise NotFoundError("Availability slot not found during booking")
        if slot.is_full:
            raise ConflictError("This availability is fully booked. Choose another slot.")

        reservation = strategy_for(slot.schedule_type).reserve(session, slot, request.preferred_time)
        appointment = self._insert_appointment(session, slot, patient_id, request, reservation)
        adjust_slot_bookings(slot, +1)
        session.flush()

        LOGGER.info(
            "Booked %s for patient=%s doctor=%s slot=%s at %s %s (%s)",
            appointment.booking_reference,
            patient_id,
            slot.doctor_id,
            slot.id,
            slot.date,
            reservation.start_time,
            slot.schedule_type.value,
        )
        return appointment

    def _insert_appointment(
        self,
        session: Session,
        slot: AvailabilitySlot,
        patient_id: int,
        request: BookingRequest,
        reservation: Reservation,
    ) -> Appointment:
        attempts = self._settings.booking_reference_attempts
        for attempt in range(1, attempts + 1):
            appointment = Appointment(
                patient_id=patient_id,
                doctor_id=slot.doctor_id,
                availability_slot_id=slot.id,
                sub_slot_id=reservation.sub_slot.id if reservation.sub_slot is not None else None,
                appointment_date=slot.date,
                appointment_time=reservation.start_time,
                appointment_end_time=reservation.end_time,
                duration=slot.sub_slot_duration,
                status=AppointmentStatus.SCHEDULED,
                booking_type=slot.schedule_type,
                queue_position=reservation.queue_position,
                consultation_type=request.consultation_type or slot.consultation_type,
                consultation_fee=slot.doctor.consultation_fee,
                booking_reference=generate_booking_reference(),
                appointment_reason=request.reason,
                symptoms=request.symptoms,
            )
            try:
                with session.begin_nested():
                    session.add(appointment)
            except IntegrityError:
                LOGGER.warning("Booking reference collision on attempt %s/%s", attempt, attempts)
                continue
            return appointment

        raise InternalError("Could not generate a unique booking reference")
