"""Doctor-facing availability and appointment routes."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Query, status

from medibook.models.appointment import AppointmentStatus
from medibook.schemas import (
    AppointmentRead,
    AppointmentSummary,
    AvailabilityView,
    CancelRequest,
    SlotCreateRequest,
    SlotRead,
    SlotUpdateRequest,
    StatusUpdateRequest,
)
from medibook.routers.dependencies import (
    get_cancellation_service,
    get_discovery,
    get_lifecycle,
    get_slot_generator,
    get_slot_mutator,
)
from medibook.services.cancellation import CancellationService
from medibook.services.discovery import AvailabilityDiscovery
from medibook.services.lifecycle import AppointmentLifecycle
from medibook.services.slot_generator import SlotGenerator
from medibook.services.slot_mutator import SlotMutator

router = APIRouter()


@router.post(
    "/{doctor_id}/availability-slots",
    response_model=Union[List[SlotRead], SlotRead],
    status_code=status.HTTP_201_CREATED,
)
def create_availability_slot(
    doctor_id: int,
    payload: SlotCreateRequest,
    generator: SlotGenerator = Depends(get_slot_generator),
) -> Union[List[SlotRead], SlotRead]:
    """Create one slot, or a recurring series when ``is_recurring`` is set."""

    created = generator.create_availability_slot(doctor_id, payload)
    if isinstance(created, list):
        return [SlotRead.model_validate(slot) for slot in created]
    return SlotRead.model_validate(created)


@router.get("/{doctor_id}/availability-slots", response_model=List[SlotRead])
def list_availability_slots(
    doctor_id: int,
    day: Optional[date] = Query(default=None, alias="date"),
    discovery: AvailabilityDiscovery = Depends(get_discovery),
) -> List[SlotRead]:
    return [SlotRead.model_validate(slot) for slot in discovery.list_availability_slots(doctor_id, day)]


@router.patch("/{doctor_id}/availability-slots/{slot_id}", response_model=SlotRead)
def update_availability_slot(
    doctor_id: int,
    slot_id: int,
    payload: SlotUpdateRequest,
    mutator: SlotMutator = Depends(get_slot_mutator),
) -> SlotRead:
    return SlotRead.model_validate(mutator.update_availability_slot(doctor_id, slot_id, payload))


@router.delete("/{doctor_id}/availability-slots/{slot_id}")
def delete_availability_slot(
    doctor_id: int,
    slot_id: int,
    mutator: SlotMutator = Depends(get_slot_mutator),
) -> Dict[str, Any]:
    mutator.delete_availability_slot(doctor_id, slot_id)
    return {"status": "deleted", "slot_id": slot_id}


@router.post("/{doctor_id}/availability-slots/{slot_id}/reconcile")
def reconcile_availability_slot(
    doctor_id: int,
    slot_id: int,
    mutator: SlotMutator = Depends(get_slot_mutator),
) -> Dict[str, Any]:
    """Repair slot and sub-slot counters from the appointment ledger."""

    report = mutator.reconcile_slot(doctor_id, slot_id)
    return {
        "slot_id": report.slot_id,
        "consistent": report.consistent,
        "slot_drift": report.slot_drift,
        "sub_slot_drift": report.sub_slot_drift,
    }


@router.get("/{doctor_id}/available-slots", response_model=AvailabilityView)
def get_doctor_available_slots(
    doctor_id: int,
    day: date = Query(alias="date"),
    discovery: AvailabilityDiscovery = Depends(get_discovery),
) -> AvailabilityView:
    """Bookable slots for one date, as shown to patients."""

    return discovery.get_doctor_available_slots(doctor_id, day)


@router.get("/{doctor_id}/appointments", response_model=List[AppointmentRead])
def list_doctor_appointments(
    doctor_id: int,
    day: Optional[date] = Query(default=None, alias="date"),
    status: Optional[AppointmentStatus] = None,
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
) -> List[AppointmentRead]:
    """The doctor's schedule, earliest first."""

    appointments = lifecycle.list_doctor_appointments(doctor_id, day, status)
    return [AppointmentRead.model_validate(appointment) for appointment in appointments]


@router.get("/{doctor_id}/appointments/{appointment_id}", response_model=AppointmentSummary)
def get_appointment_details(
    doctor_id: int,
    appointment_id: int,
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
) -> AppointmentSummary:
    return lifecycle.get_appointment_details(appointment_id, doctor_id=doctor_id)


@router.post("/{doctor_id}/appointments/{appointment_id}/cancel", response_model=AppointmentRead)
def cancel_appointment(
    doctor_id: int,
    appointment_id: int,
    payload: CancelRequest,
    cancellations: CancellationService = Depends(get_cancellation_service),
) -> AppointmentRead:
    appointment = cancellations.cancel_appointment(doctor_id, appointment_id, payload)
    return AppointmentRead.model_validate(appointment)


@router.patch("/{doctor_id}/appointments/{appointment_id}/status", response_model=AppointmentRead)
def update_appointment_status(
    doctor_id: int,
    appointment_id: int,
    payload: StatusUpdateRequest,
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
) -> AppointmentRead:
    appointment = lifecycle.update_appointment_status(doctor_id, appointment_id, payload)
    return AppointmentRead.model_validate(appointment)
