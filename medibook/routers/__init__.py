"""API router initializers."""

from fastapi import APIRouter


def get_api_router() -> APIRouter:
    """Construct and return the API router."""

    from medibook.routers.appointments import router as appointments_router
    from medibook.routers.doctors import router as doctors_router
    from medibook.routers.patients import router as patients_router

    api_router = APIRouter()
    api_router.include_router(doctors_router, prefix="/doctors", tags=["doctors"])
    api_router.include_router(patients_router, prefix="/patients", tags=["patients"])
    api_router.include_router(appointments_router, prefix="/appointments", tags=["appointments"])
    return api_router
