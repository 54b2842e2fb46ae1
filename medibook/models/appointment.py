"""Appointment model definition."""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medibook.models.availability import ConsultationType, ScheduleType, enum_values
from medibook.models.base import Base, utcnow

if TYPE_CHECKING:
    from medibook.models.availability import AppointmentSubSlot, AvailabilitySlot
    from medibook.models.doctor import Doctor
    from medibook.models.patient import Patient
else:  # pragma: no cover - typing runtime fallback
    AppointmentSubSlot = "AppointmentSubSlot"  # type: ignore[assignment]
    AvailabilitySlot = "AvailabilitySlot"  # type: ignore[assignment]
    Doctor = "Doctor"  # type: ignore[assignment]
    Patient = "Patient"  # type: ignore[assignment]


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


class CancelledBy(str, enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    SYSTEM = "system"


# Statuses whose appointment no longer holds capacity in its slot.
RELEASED_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.RESCHEDULED})


class Appointment(Base):
    """Represents a patient booking against a doctor's availability slot."""

    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointment_slot_status", "availability_slot_id", "status"),
        Index("ix_appointment_patient_date", "patient_id", "appointment_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id"),
        nullable=False,
    )
    doctor_id: Mapped[int] = mapped_column(
        ForeignKey("doctors.id"),
        nullable=False,
    )
    # Nulled when a slot holding only cancelled appointments is deleted.
    availability_slot_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("availability_slots.id", ondelete="SET NULL"),
        nullable=True,
    )
    sub_slot_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appointment_sub_slots.id", ondelete="SET NULL"),
        nullable=True,
    )

    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    appointment_time: Mapped[str] = mapped_column(String(8), nullable=False)
    appointment_end_time: Mapped[str] = mapped_column(String(8), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, native_enum=False, length=16, values_callable=enum_values),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
    )
    booking_type: Mapped[ScheduleType] = mapped_column(
        Enum(ScheduleType, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
    )
    queue_position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    consultation_type: Mapped[ConsultationType] = mapped_column(
        Enum(ConsultationType, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
    )
    consultation_fee: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2),
        nullable=True,
    )
    booking_reference: Mapped[str] = mapped_column(
        String(10),
        unique=True,
        nullable=False,
    )
    appointment_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    symptoms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    patient_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[CancelledBy]] = mapped_column(
        Enum(CancelledBy, native_enum=False, length=16, values_callable=enum_values),
        nullable=True,
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    original_appointment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appointments.id"),
        nullable=True,
    )
    rescheduled_to_appointment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appointments.id"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    patient: Mapped["Patient"] = relationship(back_populates="appointments")
    doctor: Mapped["Doctor"] = relationship(back_populates="appointments")
    availability_slot: Mapped[Optional["AvailabilitySlot"]] = relationship(
        back_populates="appointments",
    )
    sub_slot: Mapped[Optional["AppointmentSubSlot"]] = relationship(
        back_populates="appointments",
    )

    @property
    def holds_capacity(self) -> bool:
        return self.status not in RELEASED_STATUSES
