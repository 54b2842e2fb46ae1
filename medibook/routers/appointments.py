"""Appointment lookup routes."""

from fastapi import APIRouter, Depends

from medibook.routers.dependencies import get_lifecycle
from medibook.schemas import AppointmentRead
from medibook.services.lifecycle import AppointmentLifecycle

router = APIRouter()


@router.get("/reference/{reference}", response_model=AppointmentRead)
def get_appointment_by_reference(
    reference: str,
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
) -> AppointmentRead:
    """Look up an appointment by its booking reference."""

    return AppointmentRead.model_validate(lifecycle.get_appointment_by_reference(reference))
