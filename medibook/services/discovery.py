"""Read-only availability views for patients and doctors."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from medibook.models.availability import AvailabilitySlot, ScheduleType
from medibook.models.doctor import Doctor
from medibook.schemas import AvailabilityView, DoctorSummary, SlotAvailability
from medibook.services import availability_cache
from medibook.services.db import session_scope
from medibook.services.errors import NotFoundError, ValidationError
from medibook.services.strategies import strategy_for
from medibook.utils.config import Settings, get_settings

LOGGER = logging.getLogger(__name__)


class AvailabilityDiscovery:
    """Answer "what can be booked with this doctor on this date"."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    def get_doctor_available_slots(
        self,
        doctor_id: int,
        day: date,
        *,
        now: Optional[datetime] = None,
    ) -> AvailabilityView:
        """Bookable slots for ``day``, served from Redis when a fresh view exists."""

        now = now or datetime.now()
        today = now.date()

        with session_scope(self._session_factory) as session:
            doctor = session.get(Doctor, doctor_id)
            if doctor is None:
                raise NotFoundError("Doctor not found")
            if day < today:
                raise ValidationError("Cannot view availability for past dates")
            if day > today + timedelta(days=doctor.advance_booking_days):
                raise ValidationError(
                    f"Cannot book more than {doctor.advance_booking_days} days in advance"
                )

            generation = availability_cache.current_generation(doctor_id, day)
            cached = availability_cache.load_view(doctor_id, day, generation)
            if cached:
                try:
                    return AvailabilityView.model_validate_json(cached)
                except PydanticValidationError:
                    LOGGER.warning("Discarding unreadable cached view: doctor=%s date=%s", doctor_id, day)

            view = AvailabilityView(
                doctor=DoctorSummary(
                    id=doctor.id,
                    name=doctor.name,
                    specialization=doctor.specialization,
                    consultation_fee=doctor.consultation_fee,
                    clinic_address=doctor.clinic_address,
                ),
                date=day,
                slots=self._bookable_slots(session, doctor_id, day),
            )

        availability_cache.store_view(
            doctor_id,
            day,
            generation,
            view.model_dump_json(),
            self._settings.availability_cache_ttl_seconds,
        )
        return view

    def list_availability_slots(
        self,
        doctor_id: int,
        day: Optional[date] = None,
        *,
        now: Optional[datetime] = None,
    ) -> List[AvailabilitySlot]:
        """A doctor's active slots with their sub-slots loaded.

        With ``day`` only that date is listed; without it, every date after
        today.
        """

        today = (now or datetime.now()).date()

        with session_scope(self._session_factory) as session:
            if session.get(Doctor, doctor_id) is None:
                raise NotFoundError("Doctor not found")

            stmt = (
                select(AvailabilitySlot)
                .where(
                    AvailabilitySlot.doctor_id == doctor_id,
                    AvailabilitySlot.is_active.is_(True),
                )
                .options(selectinload(AvailabilitySlot.sub_slots))
                .order_by(AvailabilitySlot.date, AvailabilitySlot.start_time)
            )
            if day is not None:
                stmt = stmt.where(AvailabilitySlot.date == day)
            else:
                stmt = stmt.where(AvailabilitySlot.date > today)
            return list(session.scalars(stmt))

    def _bookable_slots(self, session: Session, doctor_id: int, day: date) -> List[SlotAvailability]:
        stmt = (
            select(AvailabilitySlot)
            .where(
                AvailabilitySlot.doctor_id == doctor_id,
                AvailabilitySlot.date == day,
                AvailabilitySlot.is_active.is_(True),
            )
            .options(selectinload(AvailabilitySlot.sub_slots))
            .order_by(AvailabilitySlot.start_time)
        )

        views: List[SlotAvailability] = []
        for slot in session.scalars(stmt):
            strategy = strategy_for(slot.schedule_type)
            view = SlotAvailability(
                id=slot.id,
                start_time=slot.start_time,
                end_time=slot.end_time,
                schedule_type=slot.schedule_type,
                sub_slot_duration=slot.sub_slot_duration,
                consultation_type=slot.consultation_type,
                total_capacity=slot.total_capacity,
                available_spots=slot.available_capacity,
                has_availability=False,
            )
            if slot.schedule_type == ScheduleType.WAVE:
                view.available_sub_slots = strategy.preview(session, slot)
                view.has_availability = bool(view.available_sub_slots)
            else:
                view.next_available_slots = strategy.preview(session, slot, self._settings.stream_preview_size)
                view.has_availability = slot.available_capacity > 0 and bool(view.next_available_slots)

            if view.has_availability:
                views.append(view)
        return views
