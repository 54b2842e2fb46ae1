"""Occupancy counter primitives.

Booking, cancellation, rescheduling and slot mutation all change slot and
sub-slot counters through this module, and only while the caller holds the
row lock taken by :func:`lock_slot` / :func:`lock_sub_slot` inside its
transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from medibook.models.appointment import RELEASED_STATUSES, Appointment
from medibook.models.availability import AppointmentSubSlot, AvailabilitySlot, SubSlotStatus
from medibook.services.errors import ConflictError, NotFoundError

LOGGER = logging.getLogger(__name__)


def lock_slot(session: Session, slot_id: int) -> Optional[AvailabilitySlot]:
    """Fetch a slot with an exclusive row lock, refreshing any cached copy.

    Pending changes are flushed first so the refresh cannot discard them.
    """

    session.flush()
    stmt = (
        select(AvailabilitySlot)
        .where(AvailabilitySlot.id == slot_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.scalars(stmt).one_or_none()


def lock_sub_slot(session: Session, sub_slot_id: int) -> Optional[AppointmentSubSlot]:
    session.flush()
    stmt = (
        select(AppointmentSubSlot)
        .where(AppointmentSubSlot.id == sub_slot_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.scalars(stmt).one_or_none()


def adjust_slot_bookings(slot: AvailabilitySlot, delta: int) -> None:
    """Move ``slot.current_bookings`` by ``delta`` within ``[0, total_capacity]``.

    Reservations past capacity raise ``ConflictError``; releases floor at 0.
    """

    updated = slot.current_bookings + delta
    if delta > 0 and updated > slot.total_capacity:
        raise ConflictError("This availability is fully booked. Choose another slot.")
    if updated < 0:
        LOGGER.warning("Slot %s release below zero; clamping (bookings=%s delta=%s)", slot.id, slot.current_bookings, delta)
    slot.current_bookings = max(0, updated)


def adjust_sub_slot_bookings(sub_slot: AppointmentSubSlot, delta: int) -> None:
    """Move a sub-slot counter by ``delta`` and re-derive its status."""

    updated = sub_slot.current_bookings + delta
    if delta > 0 and updated > sub_slot.max_capacity:
        raise ConflictError(f"Time {sub_slot.start_time} is already fully booked.")
    sub_slot.current_bookings = max(0, updated)
    sub_slot.status = _derive_status(sub_slot)


def _derive_status(sub_slot: AppointmentSubSlot) -> SubSlotStatus:
    if sub_slot.max_capacity <= 0:
        return SubSlotStatus.INACTIVE
    if sub_slot.current_bookings >= sub_slot.max_capacity:
        return SubSlotStatus.FULL
    return SubSlotStatus.AVAILABLE


def release_appointment_capacity(session: Session, appointment: Appointment) -> None:
    """Give back the unit an appointment reserved in its slot and sub-slot.

    Locks are taken slot first, then sub-slot, the same order booking uses.
    """

    slot = None
    if appointment.availability_slot_id is not None:
        slot = lock_slot(session, appointment.availability_slot_id)

    if appointment.sub_slot_id is not None:
        sub_slot = lock_sub_slot(session, appointment.sub_slot_id)
        if sub_slot is not None:
            adjust_sub_slot_bookings(sub_slot, -1)

    if slot is not None:
        adjust_slot_bookings(slot, -1)
    session.flush()


@dataclass(frozen=True)
class ReconciliationReport:
    slot_id: int
    slot_drift: int
    sub_slot_drift: Dict[int, int]

    @property
    def consistent(self) -> bool:
        return self.slot_drift == 0 and not self.sub_slot_drift


def reconcile_slot(session: Session, slot_id: int) -> ReconciliationReport:
    """Recompute a slot's counters from the appointment ledger.

    Repairs drift left by a crash between the appointment write and the
    counter writes. Returns the corrections applied (ledger minus counter).
    """

    slot = lock_slot(session, slot_id)
    if slot is None:
        raise NotFoundError("Availability slot not found")

    holding = Appointment.status.not_in(list(RELEASED_STATUSES))
    live_total = session.scalar(
        select(func.count(Appointment.id)).where(
            Appointment.availability_slot_id == slot_id,
            holding,
        )
    ) or 0
    live_by_sub_slot = dict(
        session.execute(
            select(Appointment.sub_slot_id, func.count(Appointment.id))
            .where(
                Appointment.availability_slot_id == slot_id,
                Appointment.sub_slot_id.is_not(None),
                holding,
            )
            .group_by(Appointment.sub_slot_id)
        ).all()
    )

    slot_drift = live_total - slot.current_bookings
    if slot_drift:
        slot.current_bookings = min(live_total, slot.total_capacity)

    sub_slot_drift: Dict[int, int] = {}
    sub_slots = session.scalars(
        select(AppointmentSubSlot)
        .where(AppointmentSubSlot.availability_slot_id == slot_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).all()
    for sub_slot in sub_slots:
        live = live_by_sub_slot.get(sub_slot.id, 0)
        if live != sub_slot.current_bookings:
            sub_slot_drift[sub_slot.id] = live - sub_slot.current_bookings
            sub_slot.current_bookings = min(live, sub_slot.max_capacity)
            sub_slot.status = _derive_status(sub_slot)

    report = ReconciliationReport(slot_id=slot_id, slot_drift=slot_drift, sub_slot_drift=sub_slot_drift)
    if not report.consistent:
        LOGGER.warning(
            "Reconciled slot %s: slot_drift=%s sub_slot_drift=%s",
            slot_id,
            slot_drift,
            sub_slot_drift,
        )
    return report
