"""Availability slot and sub-slot ORM models."""

from __future__ import annotations

import datetime as dt
import enum
from typing import TYPE_CHECKING, List, Optional, Type

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medibook.models.base import Base, utcnow

if TYPE_CHECKING:
    from medibook.models.appointment import Appointment
    from medibook.models.doctor import Doctor
else:  # pragma: no cover - typing runtime fallback
    Appointment = "Appointment"  # type: ignore[assignment]
    Doctor = "Doctor"  # type: ignore[assignment]


def enum_values(enum_cls: Type[enum.Enum]) -> List[str]:
    """Persist enum values rather than member names."""

    return [member.value for member in enum_cls]


class ScheduleType(str, enum.Enum):
    """Scheduling discipline of an availability slot."""

    WAVE = "wave"
    STREAM = "stream"


class ConsultationType(str, enum.Enum):
    IN_PERSON = "in_person"
    VIDEO_CALL = "video_call"
    PHONE_CALL = "phone_call"
    HYBRID = "hybrid"


class SubSlotStatus(str, enum.Enum):
    AVAILABLE = "available"
    FULL = "full"
    INACTIVE = "inactive"


class AvailabilitySlot(Base):
    """A doctor-declared bookable window on one calendar date."""

    __tablename__ = "availability_slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_slot_time_order"),
        CheckConstraint(
            "current_bookings >= 0 AND current_bookings <= total_capacity",
            name="ck_slot_capacity",
        ),
        Index("ix_slot_doctor_date", "doctor_id", "date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    doctor_id: Mapped[int] = mapped_column(
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(8), nullable=False)
    end_time: Mapped[str] = mapped_column(String(8), nullable=False)
    schedule_type: Mapped[ScheduleType] = mapped_column(
        Enum(ScheduleType, native_enum=False, length=16, values_callable=enum_values),
        default=ScheduleType.STREAM,
        nullable=False,
    )
    sub_slot_duration: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    # One patient per atomic unit regardless of discipline.
    capacity_per_sub_slot: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_capacity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    consultation_type: Mapped[ConsultationType] = mapped_column(
        Enum(ConsultationType, native_enum=False, length=16, values_callable=enum_values),
        default=ConsultationType.IN_PERSON,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    doctor: Mapped["Doctor"] = relationship(back_populates="availability_slots")
    sub_slots: Mapped[List["AppointmentSubSlot"]] = relationship(
        back_populates="availability_slot",
        cascade="all, delete-orphan",
        order_by="AppointmentSubSlot.start_time",
    )
    appointments: Mapped[List["Appointment"]] = relationship(
        back_populates="availability_slot",
    )

    @property
    def available_capacity(self) -> int:
        return max(0, self.total_capacity - self.current_bookings)

    @property
    def is_full(self) -> bool:
        return self.current_bookings >= self.total_capacity


class AppointmentSubSlot(Base):
    """An atomic bookable unit inside a wave-discipline slot."""

    __tablename__ = "appointment_sub_slots"
    __table_args__ = (
        CheckConstraint(
            "current_bookings >= 0 AND current_bookings <= max_capacity",
            name="ck_sub_slot_capacity",
        ),
        Index("ix_sub_slot_slot_start", "availability_slot_id", "start_time"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    availability_slot_id: Mapped[int] = mapped_column(
        ForeignKey("availability_slots.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_time: Mapped[str] = mapped_column(String(8), nullable=False)
    end_time: Mapped[str] = mapped_column(String(8), nullable=False)
    max_capacity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    current_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[SubSlotStatus] = mapped_column(
        Enum(SubSlotStatus, native_enum=False, length=16, values_callable=enum_values),
        default=SubSlotStatus.AVAILABLE,
        nullable=False,
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    availability_slot: Mapped["AvailabilitySlot"] = relationship(back_populates="sub_slots")
    appointments: Mapped[List["Appointment"]] = relationship(
        back_populates="sub_slot",
    )

    @property
    def available_spots(self) -> int:
        return max(0, self.max_capacity - self.current_bookings)
