"""Doctor ORM model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, DateTime, Enum, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medibook.models.availability import ScheduleType, enum_values
from medibook.models.base import Base, utcnow

if TYPE_CHECKING:
    from medibook.models.appointment import Appointment
    from medibook.models.availability import AvailabilitySlot


class Doctor(Base):
    """Represents a doctor together with their scheduling defaults."""

    __tablename__ = "doctors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    specialization: Mapped[Optional[str]] = mapped_column(String(90), nullable=True)
    clinic_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    consultation_fee: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2),
        nullable=True,
    )

    default_schedule_type: Mapped[ScheduleType] = mapped_column(
        Enum(ScheduleType, native_enum=False, length=16, values_callable=enum_values),
        default=ScheduleType.STREAM,
        nullable=False,
    )
    default_slot_duration: Mapped[int] = mapped_column(
        Integer,
        default=15,
        nullable=False,
    )
    # Days ahead of today that patients may view and book.
    advance_booking_days: Mapped[int] = mapped_column(
        Integer,
        default=30,
        nullable=False,
    )
    # Minimum minutes between booking time and slot start for same-day bookings.
    same_day_booking_cutoff: Mapped[int] = mapped_column(
        Integer,
        default=120,
        nullable=False,
    )
    is_accepting_patients: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    availability_slots: Mapped[List["AvailabilitySlot"]] = relationship(
        back_populates="doctor",
        cascade="all, delete-orphan",
    )
    appointments: Mapped[List["Appointment"]] = relationship(
        back_populates="doctor",
    )
