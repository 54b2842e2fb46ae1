"""Shared fixtures: a throwaway SQLite database, seed rows and an in-memory cache."""

from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, Optional

import pytest
from sqlalchemy.orm import selectinload

from medibook.models.appointment import Appointment
from medibook.models.availability import AvailabilitySlot, ScheduleType
from medibook.models.doctor import Doctor
from medibook.models.patient import Patient
from medibook.schemas import SlotCreateRequest
from medibook.services import availability_cache
from medibook.services.booking import BookingAllocator
from medibook.services.db import create_db_engine, create_session_factory, init_db, session_scope
from medibook.services.slot_generator import SlotGenerator
from medibook.utils.config import Settings

# Monday morning; every scenario is pinned to this instant.
NOW = datetime(2030, 1, 7, 8, 0)
TOMORROW = date(2030, 1, 8)


@pytest.fixture()
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'medibook.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture()
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture(autouse=True)
def cache_store(monkeypatch) -> Dict[str, str]:
    """Replace Redis helpers with an in-memory dict."""

    store: Dict[str, str] = {}

    def fake_cache_set(key: str, value: str, ex: Optional[int] = None) -> bool:
        store[key] = value
        return True

    def fake_cache_get(key: str) -> Optional[str]:
        return store.get(key)

    def fake_cache_incr(key: str, ex: Optional[int] = None) -> int:
        value = int(store.get(key, "0")) + 1
        store[key] = str(value)
        return value

    monkeypatch.setattr(availability_cache, "cache_set", fake_cache_set)
    monkeypatch.setattr(availability_cache, "cache_get", fake_cache_get)
    monkeypatch.setattr(availability_cache, "cache_incr", fake_cache_incr)
    return store


@pytest.fixture()
def make_doctor(session_factory) -> Callable[..., Doctor]:
    def _make(**overrides) -> Doctor:
        fields = {
            "name": "Dr. Asha Rao",
            "specialization": "General Medicine",
            "clinic_address": "12 Lake Road",
            "consultation_fee": Decimal("500.00"),
        }
        fields.update(overrides)
        with session_scope(session_factory) as session:
            doctor = Doctor(**fields)
            session.add(doctor)
        return doctor

    return _make


@pytest.fixture()
def doctor(make_doctor) -> Doctor:
    return make_doctor()


@pytest.fixture()
def make_patient(session_factory) -> Callable[..., Patient]:
    counter = {"n": 0}

    def _make(name: Optional[str] = None) -> Patient:
        counter["n"] += 1
        with session_scope(session_factory) as session:
            patient = Patient(
                name=name or f"Patient {counter['n']}",
                phone=f"+9100000000{counter['n']:02d}",
                email=f"patient{counter['n']}@example.com",
            )
            session.add(patient)
        return patient

    return _make


@pytest.fixture()
def patient(make_patient) -> Patient:
    return make_patient("Ravi Kumar")


@pytest.fixture()
def generator(session_factory, settings) -> SlotGenerator:
    return SlotGenerator(session_factory, settings=settings)


@pytest.fixture()
def allocator(session_factory, settings) -> BookingAllocator:
    return BookingAllocator(session_factory, settings=settings)


@pytest.fixture()
def make_slot(generator, doctor) -> Callable[..., AvailabilitySlot]:
    """Create a single slot for ``doctor`` (09:00-10:00 wave, 15 minute units by default)."""

    def _make(
        start: str = "09:00",
        end: str = "10:00",
        schedule_type: ScheduleType = ScheduleType.WAVE,
        duration: int = 15,
        day: date = TOMORROW,
        doctor_id: Optional[int] = None,
        **extra,
    ) -> AvailabilitySlot:
        request = SlotCreateRequest(
            date=day,
            start_time=start,
            end_time=end,
            schedule_type=schedule_type,
            sub_slot_duration=duration,
            **extra,
        )
        return generator.create_availability_slot(doctor_id or doctor.id, request, now=NOW)

    return _make


@pytest.fixture()
def fetch_slot(session_factory) -> Callable[[int], Optional[AvailabilitySlot]]:
    def _fetch(slot_id: int) -> Optional[AvailabilitySlot]:
        with session_scope(session_factory) as session:
            return session.get(
                AvailabilitySlot,
                slot_id,
                options=[selectinload(AvailabilitySlot.sub_slots)],
            )

    return _fetch


@pytest.fixture()
def fetch_appointment(session_factory) -> Callable[[int], Optional[Appointment]]:
    def _fetch(appointment_id: int) -> Optional[Appointment]:
        with session_scope(session_factory) as session:
            return session.get(Appointment, appointment_id)

    return _fetch
