"""Per-discipline unit selection for the booking allocator.

Each scheduling discipline implements the same two operations: ``reserve``
picks and claims the next unit inside an already locked slot, and
``preview`` lists the units a patient could be given next. The allocator
owns locking and transaction boundaries; strategies only select units.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from medibook.models.appointment import RELEASED_STATUSES, Appointment
from medibook.models.availability import AppointmentSubSlot, AvailabilitySlot, ScheduleType
from medibook.schemas import StreamPosition, SubSlotAvailability
from medibook.services.capacity import adjust_sub_slot_bookings
from medibook.services.errors import ConflictError, ValidationError
from medibook.utils.timegrid import minutes_to_time, time_to_minutes


@dataclass(frozen=True)
class Reservation:
    """The concrete time a booking was given."""

    start_time: str
    end_time: str
    sub_slot: Optional[AppointmentSubSlot] = None
    queue_position: Optional[int] = None


class AllocationStrategy(abc.ABC):
    schedule_type: ScheduleType

    @abc.abstractmethod
    def reserve(
        self,
        session: Session,
        slot: AvailabilitySlot,
        preferred_time: Optional[str],
    ) -> Reservation:
        raise NotImplementedError

    @abc.abstractmethod
    def preview(
        self,
        session: Session,
        slot: AvailabilitySlot,
        limit: Optional[int] = None,
    ) -> Union[List[SubSlotAvailability], List[StreamPosition]]:
        raise NotImplementedError


class WaveStrategy(AllocationStrategy):
    """Patients pick, or are given, one fixed-time sub-slot."""

    schedule_type = ScheduleType.WAVE

    def reserve(
        self,
        session: Session,
        slot: AvailabilitySlot,
        preferred_time: Optional[str],
    ) -> Reservation:
        session.flush()
        if preferred_time:
            sub_slot = session.scalars(
                select(AppointmentSubSlot)
                .where(
                    AppointmentSubSlot.availability_slot_id == slot.id,
                    AppointmentSubSlot.start_time == preferred_time,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            ).first()
            if sub_slot is None:
                raise ValidationError(f"Preferred sub-slot {preferred_time} not found.")
            if sub_slot.current_bookings >= sub_slot.max_capacity:
                raise ConflictError(f"Preferred time {preferred_time} is already fully booked.")
        else:
            sub_slot = session.scalars(
                select(AppointmentSubSlot)
                .where(
                    AppointmentSubSlot.availability_slot_id == slot.id,
                    AppointmentSubSlot.current_bookings < AppointmentSubSlot.max_capacity,
                )
                .order_by(AppointmentSubSlot.start_time)
                .limit(1)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).first()
            if sub_slot is None:
                raise ConflictError("No available sub-slots found for wave scheduling.")

        adjust_sub_slot_bookings(sub_slot, +1)
        return Reservation(
            start_time=sub_slot.start_time,
            end_time=sub_slot.end_time,
            sub_slot=sub_slot,
        )

    def preview(
        self,
        session: Session,
        slot: AvailabilitySlot,
        limit: Optional[int] = None,
    ) -> List[SubSlotAvailability]:
        return [
            SubSlotAvailability(
                id=sub_slot.id,
                start_time=sub_slot.start_time,
                end_time=sub_slot.end_time,
                available_spots=sub_slot.available_spots,
                max_capacity=sub_slot.max_capacity,
            )
            for sub_slot in slot.sub_slots
            if sub_slot.current_bookings < sub_slot.max_capacity
        ]


class StreamStrategy(AllocationStrategy):
    """Patients queue for sequential positions computed from the slot start.

    Position ``p`` (1-based) covers ``start + (p - 1) * duration`` for one
    duration. The next booking takes the lowest position not held by a live
    appointment, which is ``current_bookings + 1`` unless an earlier
    position was released by a cancellation.
    """

    schedule_type = ScheduleType.STREAM

    @staticmethod
    def position_window(slot: AvailabilitySlot, position: int) -> Tuple[int, int]:
        start = time_to_minutes(slot.start_time) + (position - 1) * slot.sub_slot_duration
        return start, start + slot.sub_slot_duration

    @staticmethod
    def held_positions(session: Session, slot: AvailabilitySlot) -> Set[int]:
        rows = session.scalars(
            select(Appointment.queue_position).where(
                Appointment.availability_slot_id == slot.id,
                Appointment.queue_position.is_not(None),
                Appointment.status.not_in(list(RELEASED_STATUSES)),
            )
        )
        return set(rows)

    def free_positions(self, slot: AvailabilitySlot, held: Set[int], limit: int) -> List[int]:
        free: List[int] = []
        position = 1
        while position <= slot.total_capacity and len(free) < limit:
            if position not in held:
                free.append(position)
            position += 1
        return free

    def reserve(
        self,
        session: Session,
        slot: AvailabilitySlot,
        preferred_time: Optional[str],
    ) -> Reservation:
        session.flush()
        held = self.held_positions(session, slot)
        free = self.free_positions(slot, held, 1)
        if not free:
            raise ConflictError("No more time slots available in this session.")
        queue_position = free[0]

        start, end = self.position_window(slot, queue_position)
        if end > time_to_minutes(slot.end_time):
            raise ConflictError("No more time slots available in this session.")

        assigned = minutes_to_time(start)
        if preferred_time and preferred_time != assigned:
            raise ConflictError(
                f"Preferred time {preferred_time} is not available. Assigned time is {assigned}"
            )

        return Reservation(
            start_time=assigned,
            end_time=minutes_to_time(end),
            queue_position=queue_position,
        )

    def preview(
        self,
        session: Session,
        slot: AvailabilitySlot,
        limit: Optional[int] = 3,
    ) -> List[StreamPosition]:
        held = self.held_positions(session, slot)
        slot_end = time_to_minutes(slot.end_time)
        positions: List[StreamPosition] = []
        if limit is None:
            limit = slot.total_capacity
        for position in self.free_positions(slot, held, limit):
            start, end = self.position_window(slot, position)
            if end > slot_end:
                break
            positions.append(
                StreamPosition(
                    start_time=minutes_to_time(start),
                    end_time=minutes_to_time(end),
                    position=position,
                )
            )
        return positions


STRATEGIES: Dict[ScheduleType, AllocationStrategy] = {
    ScheduleType.WAVE: WaveStrategy(),
    ScheduleType.STREAM: StreamStrategy(),
}


def strategy_for(schedule_type: ScheduleType) -> AllocationStrategy:
    """Return the allocation strategy for a slot's discipline."""

    return STRATEGIES[ScheduleType(schedule_type)]
