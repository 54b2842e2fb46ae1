"""Update and delete previously generated availability slots."""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from medibook.models.appointment import Appointment
from medibook.models.availability import AvailabilitySlot
from medibook.schemas import SlotUpdateRequest
from medibook.services import availability_cache
from medibook.services.capacity import ReconciliationReport, lock_slot, reconcile_slot
from medibook.services.db import session_scope
from medibook.services.errors import ConflictError, NotFoundError, ValidationError
from medibook.services.slot_generator import (
    calculate_total_capacity,
    find_overlapping_slot,
    materialize_sub_slots,
)

LOGGER = logging.getLogger(__name__)

# Fields a doctor may still edit once any appointment references the slot.
NON_STRUCTURAL_FIELDS = frozenset({"notes", "consultation_type"})
GRID_FIELDS = frozenset({"start_time", "end_time", "sub_slot_duration", "schedule_type"})
NULLABLE_FIELDS = frozenset({"notes"})


class SlotMutator:
    """Guarded edits of a doctor's own availability slots.

    Both operations take the slot's exclusive lock, so an edit and a
    concurrent booking into the same slot are serialised.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def update_availability_slot(
        self,
        doctor_id: int,
        slot_id: int,
        patch: SlotUpdateRequest,
    ) -> AvailabilitySlot:
        changes: Dict[str, Any] = {
            key: value
            for key, value in patch.model_dump(exclude_unset=True).items()
            if value is not None or key in NULLABLE_FIELDS
        }

        with session_scope(self._session_factory) as session:
            slot = self._load_owned_slot(session, doctor_id, slot_id)

            appointment_count = session.scalar(
                select(func.count(Appointment.id)).where(Appointment.availability_slot_id == slot.id)
            )
            if appointment_count and set(changes) - NON_STRUCTURAL_FIELDS:
                raise ValidationError("Cannot modify time or capacity of slots with existing appointments")

            start_time = changes.get("start_time", slot.start_time)
            end_time = changes.get("end_time", slot.end_time)
            if start_time >= end_time:
                raise ValidationError("Start time must be before end time")

            if "start_time" in changes or "end_time" in changes:
                clash = find_overlapping_slot(
                    session,
                    doctor_id,
                    slot.date,
                    start_time,
                    end_time,
                    exclude_slot_id=slot.id,
                )
                if clash is not None:
                    raise ConflictError("Updated time slot overlaps with existing availability")

            regrid = bool(GRID_FIELDS & set(changes))
            if regrid:
                duration = changes.get("sub_slot_duration", slot.sub_slot_duration)
                total_capacity = calculate_total_capacity(start_time, end_time, duration)
                if total_capacity < 1:
                    raise ValidationError("Window is shorter than one sub-slot duration")
                changes["total_capacity"] = total_capacity

            for key, value in changes.items():
                setattr(slot, key, value)
            session.flush()

            if regrid:
                self._regenerate_sub_slots(session, slot)

            LOGGER.info("Updated slot %s for doctor=%s fields=%s", slot.id, doctor_id, sorted(changes))
            session.refresh(slot, attribute_names=["sub_slots"])

        availability_cache.invalidate(doctor_id, [slot.date])
        return slot

    def delete_availability_slot(self, doctor_id: int, slot_id: int) -> None:
        with session_scope(self._session_factory) as session:
            slot = self._load_owned_slot(session, doctor_id, slot_id)

            appointments = session.scalars(
                select(Appointment).where(Appointment.availability_slot_id == slot.id)
            ).all()
            if any(appointment.holds_capacity for appointment in appointments):
                raise ValidationError(
                    "Cannot delete availability slot with active appointments. Cancel appointments first."
                )

            # Cancelled appointments stay in the ledger without a slot.
            for appointment in appointments:
                appointment.availability_slot_id = None
                appointment.sub_slot_id = None
            session.flush()

            slot_date = slot.date
            session.delete(slot)
            LOGGER.info("Deleted slot %s for doctor=%s (detached %s appointments)", slot_id, doctor_id, len(appointments))

        availability_cache.invalidate(doctor_id, [slot_date])

    def reconcile_slot(self, doctor_id: int, slot_id: int) -> ReconciliationReport:
        """Rebuild a slot's counters from its live appointments."""

        with session_scope(self._session_factory) as session:
            slot = self._load_owned_slot(session, doctor_id, slot_id)
            report = reconcile_slot(session, slot.id)
            slot_date = slot.date

        if not report.consistent:
            availability_cache.invalidate(doctor_id, [slot_date])
        return report

    @staticmethod
    def _load_owned_slot(session: Session, doctor_id: int, slot_id: int) -> AvailabilitySlot:
        slot = lock_slot(session, slot_id)
        if slot is None or slot.doctor_id != doctor_id:
            raise NotFoundError("Availability slot not found")
        return slot

    @staticmethod
    def _regenerate_sub_slots(session: Session, slot: AvailabilitySlot) -> None:
        """Rebuild the sub-slot grid, keeping sub-slots an appointment points at."""

        referenced = set(
            session.scalars(
                select(Appointment.sub_slot_id).where(
                    Appointment.availability_slot_id == slot.id,
                    Appointment.sub_slot_id.is_not(None),
                )
            )
        )
        kept = [sub_slot for sub_slot in slot.sub_slots if sub_slot.id in referenced]
        for sub_slot in list(slot.sub_slots):
            if sub_slot.id not in referenced:
                slot.sub_slots.remove(sub_slot)
        session.flush()

        materialize_sub_slots(slot, skip_start_times=frozenset(s.start_time for s in kept))
        session.flush()
