"""Patient-facing booking routes."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, status

from medibook.models.appointment import AppointmentStatus
from medibook.routers.dependencies import get_allocator, get_cancellation_service, get_lifecycle
from medibook.schemas import (
    AppointmentRead,
    AppointmentSummary,
    BookingRequest,
    PatientCancelRequest,
    RescheduleRequest,
)
from medibook.services.booking import BookingAllocator
from medibook.services.cancellation import CancellationService
from medibook.services.lifecycle import AppointmentLifecycle

router = APIRouter()


@router.post(
    "/{patient_id}/appointments",
    response_model=AppointmentRead,
    status_code=status.HTTP_201_CREATED,
)
def book_appointment(
    patient_id: int,
    payload: BookingRequest,
    allocator: BookingAllocator = Depends(get_allocator),
) -> AppointmentRead:
    return AppointmentRead.model_validate(allocator.book_appointment(patient_id, payload))


@router.get("/{patient_id}/appointments", response_model=List[AppointmentSummary])
def list_patient_appointments(
    patient_id: int,
    status: Optional[AppointmentStatus] = None,
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
) -> List[AppointmentSummary]:
    return lifecycle.list_patient_appointments(patient_id, status)


@router.get("/{patient_id}/appointments/{appointment_id}", response_model=AppointmentSummary)
def get_appointment_details(
    patient_id: int,
    appointment_id: int,
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
) -> AppointmentSummary:
    return lifecycle.get_appointment_details(appointment_id, patient_id=patient_id)


@router.post("/{patient_id}/appointments/{appointment_id}/cancel", response_model=AppointmentRead)
def cancel_patient_appointment(
    patient_id: int,
    appointment_id: int,
    payload: Optional[PatientCancelRequest] = Body(default=None),
    cancellations: CancellationService = Depends(get_cancellation_service),
) -> AppointmentRead:
    reason = payload.reason if payload is not None else None
    appointment = cancellations.cancel_patient_appointment(patient_id, appointment_id, reason)
    return AppointmentRead.model_validate(appointment)


@router.post("/{patient_id}/appointments/{appointment_id}/confirm", response_model=AppointmentRead)
def confirm_appointment(
    patient_id: int,
    appointment_id: int,
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
) -> AppointmentRead:
    return AppointmentRead.model_validate(lifecycle.confirm_appointment(patient_id, appointment_id))


@router.post("/{patient_id}/appointments/{appointment_id}/reschedule", response_model=AppointmentRead)
def reschedule_appointment(
    patient_id: int,
    appointment_id: int,
    payload: RescheduleRequest,
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
) -> AppointmentRead:
    """Move an appointment to another slot; returns the new appointment."""

    appointment = lifecycle.reschedule_appointment(patient_id, appointment_id, payload)
    return AppointmentRead.model_validate(appointment)
