"""Appointment lifecycle: status transitions, lookups and rescheduling."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from medibook.models.appointment import Appointment, AppointmentStatus
from medibook.models.doctor import Doctor
from medibook.models.patient import Patient
from medibook.schemas import (
    AppointmentSummary,
    BookingRequest,
    RescheduleRequest,
    StatusUpdateRequest,
)
from medibook.services import availability_cache
from medibook.services.booking import BookingAllocator
from medibook.services.capacity import lock_slot, release_appointment_capacity
from medibook.services.db import session_scope
from medibook.services.errors import BookingError, InternalError, NotFoundError, ValidationError
from medibook.utils.config import Settings, get_settings
from medibook.utils.timegrid import combine

LOGGER = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})

TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
            AppointmentStatus.RESCHEDULED,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
            AppointmentStatus.RESCHEDULED,
        }
    ),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS.get(AppointmentStatus(current), frozenset())


def ensure_transition(appointment: Appointment, target: AppointmentStatus) -> None:
    if not can_transition(appointment.status, target):
        raise ValidationError(
            f"Cannot change appointment from {AppointmentStatus(appointment.status).value} to {target.value}"
        )


def appointment_starts_at(appointment: Appointment) -> datetime:
    return combine(appointment.appointment_date, appointment.appointment_time)


def is_outside_cutoff(appointment: Appointment, now: datetime, hours: int) -> bool:
    """True when the appointment starts strictly more than ``hours`` after ``now``."""

    return appointment_starts_at(appointment) - now > timedelta(hours=hours)


def can_cancel(appointment: Appointment, now: datetime, hours: int) -> bool:
    return appointment.status in ACTIVE_STATUSES and is_outside_cutoff(appointment, now, hours)


def can_reschedule(appointment: Appointment, now: datetime, hours: int) -> bool:
    return appointment.status in ACTIVE_STATUSES and is_outside_cutoff(appointment, now, hours)


def lock_appointment(
    session: Session,
    appointment_id: int,
    *,
    patient_id: Optional[int] = None,
    doctor_id: Optional[int] = None,
) -> Appointment:
    """Fetch an appointment under a row lock, scoped to its patient or doctor."""

    session.flush()
    stmt = (
        select(Appointment)
        .where(Appointment.id == appointment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if patient_id is not None:
        stmt = stmt.where(Appointment.patient_id == patient_id)
    if doctor_id is not None:
        stmt = stmt.where(Appointment.doctor_id == doctor_id)

    appointment = session.scalars(stmt).one_or_none()
    if appointment is None:
        raise NotFoundError("Appointment not found")
    return appointment


def append_note(appointment: Appointment, note: str) -> None:
    appointment.notes = f"{appointment.notes}\n{note}" if appointment.notes else note


class AppointmentLifecycle:
    """Status changes and queries on existing appointments."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        settings: Optional[Settings] = None,
        allocator: Optional[BookingAllocator] = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._allocator = allocator or BookingAllocator(session_factory, settings=self._settings)

    def list_patient_appointments(
        self,
        patient_id: int,
        status: Optional[AppointmentStatus] = None,
        *,
        now: Optional[datetime] = None,
    ) -> List[AppointmentSummary]:
        now = now or datetime.now()
        with session_scope(self._session_factory) as session:
            if session.get(Patient, patient_id) is None:
                raise NotFoundError("Patient not found")

            stmt = select(Appointment).where(Appointment.patient_id == patient_id)
            if status is not None:
                stmt = stmt.where(Appointment.status == status)
            stmt = stmt.order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc())
            return [self._summarize(appointment, now) for appointment in session.scalars(stmt)]

    def list_doctor_appointments(
        self,
        doctor_id: int,
        day: Optional[date] = None,
        status: Optional[AppointmentStatus] = None,
    ) -> List[Appointment]:
        """A doctor's appointments in chronological order, optionally for one date or status."""

        with session_scope(self._session_factory) as session:
            if session.get(Doctor, doctor_id) is None:
                raise NotFoundError("Doctor not found")

            stmt = select(Appointment).where(Appointment.doctor_id == doctor_id)
            if day is not None:
                stmt = stmt.where(Appointment.appointment_date == day)
            if status is not None:
                stmt = stmt.where(Appointment.status == status)
            stmt = stmt.order_by(Appointment.appointment_date, Appointment.appointment_time)
            return list(session.scalars(stmt))

    def get_appointment_details(
        self,
        appointment_id: int,
        *,
        patient_id: Optional[int] = None,
        doctor_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> AppointmentSummary:
        """One appointment as seen by its patient or its doctor.

        Callers that are not a party to the appointment get the same
        ``NotFoundError`` as for a missing id.
        """

        if patient_id is None and doctor_id is None:
            raise ValidationError("Appointment details require a patient or doctor")

        now = now or datetime.now()
        with session_scope(self._session_factory) as session:
            stmt = select(Appointment).where(Appointment.id == appointment_id)
            if patient_id is not None:
                stmt = stmt.where(Appointment.patient_id == patient_id)
            if doctor_id is not None:
                stmt = stmt.where(Appointment.doctor_id == doctor_id)

            appointment = session.scalars(stmt).one_or_none()
            if appointment is None:
                raise NotFoundError("Appointment not found")
            return self._summarize(appointment, now)

    def _summarize(self, appointment: Appointment, now: datetime) -> AppointmentSummary:
        summary = AppointmentSummary.model_validate(appointment)
        summary.can_cancel = can_cancel(appointment, now, self._settings.cancellation_cutoff_hours)
        summary.can_reschedule = can_reschedule(appointment, now, self._settings.reschedule_cutoff_hours)
        return summary

    def get_appointment_by_reference(self, reference: str) -> Appointment:
        with session_scope(self._session_factory) as session:
            appointment = session.scalars(
                select(Appointment).where(Appointment.booking_reference == reference.strip().upper())
            ).one_or_none()
            if appointment is None:
                raise NotFoundError("Appointment not found")
        return appointment

    def confirm_appointment(self, patient_id: int, appointment_id: int) -> Appointment:
        """Patient acknowledges a scheduled appointment."""

        with session_scope(self._session_factory) as session:
            appointment = lock_appointment(session, appointment_id, patient_id=patient_id)
            ensure_transition(appointment, AppointmentStatus.CONFIRMED)
            appointment.status = AppointmentStatus.CONFIRMED
            appointment.patient_confirmed = True
            LOGGER.info("Appointment %s confirmed by patient=%s", appointment.booking_reference, patient_id)
        return appointment

    def update_appointment_status(
        self,
        doctor_id: int,
        appointment_id: int,
        request: StatusUpdateRequest,
    ) -> Appointment:
        """Doctor moves an appointment to confirmed, completed or no_show.

        None of these release capacity: a completed or missed appointment
        still consumed its unit.
        """

        target = AppointmentStatus(request.status)
        with session_scope(self._session_factory) as session:
            appointment = lock_appointment(session, appointment_id, doctor_id=doctor_id)
            ensure_transition(appointment, target)
            appointment.status = target
            if request.notes:
                append_note(appointment, request.notes)
            LOGGER.info(
                "Appointment %s moved to %s by doctor=%s",
                appointment.booking_reference,
                target.value,
                doctor_id,
            )
        return appointment

    def reschedule_appointment(
        self,
        patient_id: int,
        appointment_id: int,
        request: RescheduleRequest,
        *,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Move an appointment into another slot in a single transaction.

        The original releases its unit and becomes ``rescheduled``; the
        successor is allocated exactly like a fresh booking. If the
        successor cannot be allocated, nothing changes.
        """

        now = now or datetime.now()
        hours = self._settings.reschedule_cutoff_hours

        try:
            with session_scope(self._session_factory) as session:
                original = lock_appointment(session, appointment_id, patient_id=patient_id)
                if original.status not in ACTIVE_STATUSES:
                    raise ValidationError(
                        f"Cannot reschedule an appointment that is {AppointmentStatus(original.status).value}"
                    )
                if not is_outside_cutoff(original, now, hours):
                    raise ValidationError(f"Appointments can only be rescheduled more than {hours} hours in advance")

                booking = BookingRequest(
                    doctor_id=original.doctor_id,
                    availability_slot_id=request.availability_slot_id,
                    preferred_time=request.preferred_time,
                    reason=original.appointment_reason,
                    symptoms=original.symptoms,
                    consultation_type=original.consultation_type,
                )

                # Both slots are locked in ascending id order.
                for slot_id in sorted({original.availability_slot_id, booking.availability_slot_id} - {None}):
                    lock_slot(session, slot_id)

                original.status = AppointmentStatus.RESCHEDULED
                release_appointment_capacity(session, original)

                new_slot = self._allocator.check_preconditions(session, patient_id, booking, now)
                successor = self._allocator.allocate(session, patient_id, booking)

                successor.original_appointment_id = original.id
                original.rescheduled_to_appointment_id = successor.id
                note = f"Rescheduled to {successor.booking_reference}"
                if request.reason:
                    note = f"{note}. Reason: {request.reason}"
                append_note(original, note)
                session.flush()

                touched = {
                    (original.doctor_id, original.appointment_date),
                    (new_slot.doctor_id, new_slot.date),
                }
                LOGGER.info(
                    "Rescheduled %s -> %s for patient=%s",
                    original.booking_reference,
                    successor.booking_reference,
                    patient_id,
                )
        except BookingError as exc:
            LOGGER.warning(
                "Reschedule rolled back: patient=%s appointment=%s reason=%s",
                patient_id,
                appointment_id,
                exc.message,
            )
            raise
        except Exception as exc:
            LOGGER.exception("Unexpected reschedule failure: patient=%s appointment=%s", patient_id, appointment_id)
            raise InternalError("Failed to reschedule appointment") from exc

        for doctor_id, day in touched:
            availability_cache.invalidate(doctor_id, [day])
        return successor
