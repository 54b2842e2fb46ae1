"""Patient and doctor initiated cancellations."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from medibook.models.appointment import Appointment, AppointmentStatus, CancelledBy
from medibook.models.base import utcnow
from medibook.schemas import CancelRequest
from medibook.services import availability_cache
from medibook.services.capacity import release_appointment_capacity
from medibook.services.db import session_scope
from medibook.services.errors import ValidationError
from medibook.services.lifecycle import (
    append_note,
    can_cancel,
    ensure_transition,
    lock_appointment,
)
from medibook.utils.config import Settings, get_settings

LOGGER = logging.getLogger(__name__)


class CancellationService:
    """Cancel appointments and give their unit back to the slot.

    The status change and both counter decrements commit together.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    def cancel_patient_appointment(
        self,
        patient_id: int,
        appointment_id: int,
        reason: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Appointment:
        now = now or datetime.now()
        hours = self._settings.cancellation_cutoff_hours

        with session_scope(self._session_factory) as session:
            appointment = lock_appointment(session, appointment_id, patient_id=patient_id)
            if not can_cancel(appointment, now, hours):
                raise ValidationError(
                    f"Appointment cannot be cancelled. Must be scheduled or confirmed and more than {hours} hours in advance"
                )
            self._cancel(session, appointment, CancelledBy.PATIENT, reason)

        availability_cache.invalidate(appointment.doctor_id, [appointment.appointment_date])
        return appointment

    def cancel_appointment(
        self,
        doctor_id: int,
        appointment_id: int,
        request: CancelRequest,
    ) -> Appointment:
        """Doctor or system cancellation. No time guard applies."""

        with session_scope(self._session_factory) as session:
            appointment = lock_appointment(session, appointment_id, doctor_id=doctor_id)
            ensure_transition(appointment, AppointmentStatus.CANCELLED)
            self._cancel(session, appointment, CancelledBy(request.cancellation_type), request.reason)

        availability_cache.invalidate(doctor_id, [appointment.appointment_date])
        return appointment

    @staticmethod
    def _cancel(
        session: Session,
        appointment: Appointment,
        cancelled_by: CancelledBy,
        reason: Optional[str],
    ) -> None:
        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancelled_by = cancelled_by
        appointment.cancelled_at = utcnow()
        appointment.cancellation_reason = reason
        note = f"Cancelled by {cancelled_by.value}."
        if reason:
            note = f"{note} Reason: {reason}"
        append_note(appointment, note)

        release_appointment_capacity(session, appointment)
        LOGGER.info(
            "Cancelled %s by %s (slot=%s sub_slot=%s)",
            appointment.booking_reference,
            cancelled_by.value,
            appointment.availability_slot_id,
            appointment.sub_slot_id,
        )
