"""Service providers injected into route handlers."""

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from medibook.services.booking import BookingAllocator
from medibook.services.cancellation import CancellationService
from medibook.services.db import get_session_factory
from medibook.services.discovery import AvailabilityDiscovery
from medibook.services.lifecycle import AppointmentLifecycle
from medibook.services.slot_generator import SlotGenerator
from medibook.services.slot_mutator import SlotMutator
from medibook.utils.config import Settings, get_settings


def get_slot_generator(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> SlotGenerator:
    return SlotGenerator(session_factory, settings=settings)


def get_slot_mutator(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> SlotMutator:
    return SlotMutator(session_factory)


def get_discovery(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> AvailabilityDiscovery:
    return AvailabilityDiscovery(session_factory, settings=settings)


def get_allocator(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> BookingAllocator:
    return BookingAllocator(session_factory, settings=settings)


def get_cancellation_service(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> CancellationService:
    return CancellationService(session_factory, settings=settings)


def get_lifecycle(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    allocator: BookingAllocator = Depends(get_allocator),
) -> AppointmentLifecycle:
    return AppointmentLifecycle(session_factory, settings=settings, allocator=allocator)
