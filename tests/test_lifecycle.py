"""Status transitions, lookups and rescheduling."""

from datetime import date, datetime, timedelta

import pytest

from medibook.models.appointment import Appointment, AppointmentStatus
from medibook.models.availability import ScheduleType
from medibook.schemas import BookingRequest, CancelRequest, RescheduleRequest, StatusUpdateRequest
from medibook.services import lifecycle as lifecycle_module
from medibook.services.cancellation import CancellationService
from medibook.services.errors import ConflictError, NotFoundError, ValidationError
from medibook.services.lifecycle import AppointmentLifecycle, can_cancel, can_reschedule, can_transition

NOW = datetime(2030, 1, 7, 8, 0)
TOMORROW = date(2030, 1, 8)
DAY_AFTER = date(2030, 1, 9)


@pytest.fixture()
def lifecycle(session_factory, settings, allocator) -> AppointmentLifecycle:
    return AppointmentLifecycle(session_factory, settings=settings, allocator=allocator)


def _book(allocator, patient, slot, preferred_time=None):
    request = BookingRequest(
        doctor_id=slot.doctor_id,
        availability_slot_id=slot.id,
        preferred_time=preferred_time,
        reason="Annual check-up",
    )
    return allocator.book_appointment(patient.id, request, now=NOW)


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED, True),
        (AppointmentStatus.SCHEDULED, AppointmentStatus.COMPLETED, False),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED, True),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.NO_SHOW, True),
        (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, False),
        (AppointmentStatus.CANCELLED, AppointmentStatus.SCHEDULED, False),
        (AppointmentStatus.RESCHEDULED, AppointmentStatus.CONFIRMED, False),
    ],
)
def test_transition_table(current, target, allowed) -> None:
    """Only the listed status moves are permitted."""

    assert can_transition(current, target) is allowed


def _at(minutes_from_now: int, status: AppointmentStatus = AppointmentStatus.SCHEDULED) -> Appointment:
    starts = NOW + timedelta(minutes=minutes_from_now)
    return Appointment(
        appointment_date=starts.date(),
        appointment_time=starts.strftime("%H:%M:%S"),
        status=status,
    )


def test_cancel_and_reschedule_guards() -> None:
    """Guards need an active status and strictly more than the cutoff."""

    assert can_cancel(_at(90), NOW, 2) is False
    assert can_cancel(_at(120), NOW, 2) is False
    assert can_cancel(_at(150), NOW, 2) is True
    assert can_reschedule(_at(180), NOW, 4) is False
    assert can_reschedule(_at(300), NOW, 4) is True
    assert can_cancel(_at(600, AppointmentStatus.COMPLETED), NOW, 2) is False


def test_patient_confirms_appointment(lifecycle, allocator, make_slot, patient) -> None:
    """Confirming flags the appointment and cannot be repeated."""

    appointment = _book(allocator, patient, make_slot())

    confirmed = lifecycle.confirm_appointment(patient.id, appointment.id)

    assert confirmed.status == AppointmentStatus.CONFIRMED
    assert confirmed.patient_confirmed is True
    with pytest.raises(ValidationError):
        lifecycle.confirm_appointment(patient.id, appointment.id)


def test_doctor_status_updates_follow_the_state_machine(
    lifecycle, allocator, make_slot, patient, doctor, fetch_slot
) -> None:
    """Doctors must confirm before completing."""

    slot = make_slot()
    appointment = _book(allocator, patient, slot)

    with pytest.raises(ValidationError):
        lifecycle.update_appointment_status(doctor.id, appointment.id, StatusUpdateRequest(status="completed"))

    lifecycle.update_appointment_status(doctor.id, appointment.id, StatusUpdateRequest(status="confirmed"))
    completed = lifecycle.update_appointment_status(
        doctor.id, appointment.id, StatusUpdateRequest(status="completed", notes="Prescribed rest")
    )

    assert completed.status == AppointmentStatus.COMPLETED
    assert "Prescribed rest" in completed.notes
    assert fetch_slot(slot.id).current_bookings == 1


def test_no_show_keeps_capacity_consumed(lifecycle, allocator, make_slot, patient, doctor, fetch_slot) -> None:
    """A no-show does not give its unit back."""

    slot = make_slot()
    appointment = _book(allocator, patient, slot)

    missed = lifecycle.update_appointment_status(doctor.id, appointment.id, StatusUpdateRequest(status="no_show"))

    assert missed.status == AppointmentStatus.NO_SHOW
    assert fetch_slot(slot.id).current_bookings == 1


def test_status_update_is_scoped_to_doctor(lifecycle, allocator, make_slot, make_doctor, patient) -> None:
    """Doctors cannot update appointments of other doctors."""

    appointment = _book(allocator, patient, make_slot())
    other = make_doctor(name="Dr. Meera Iyer")

    with pytest.raises(NotFoundError):
        lifecycle.update_appointment_status(other.id, appointment.id, StatusUpdateRequest(status="confirmed"))


def test_list_patient_appointments_with_flags(lifecycle, allocator, make_slot, patient) -> None:
    """Patient listings are newest first with cutoff flags."""

    first = _book(allocator, patient, make_slot("09:00", "10:00", day=TOMORROW))
    second = _book(allocator, patient, make_slot("09:00", "10:00", day=DAY_AFTER))

    listed = lifecycle.list_patient_appointments(patient.id, now=NOW)
    assert [a.id for a in listed] == [second.id, first.id]
    assert all(a.can_cancel and a.can_reschedule for a in listed)

    # Three hours before the first appointment: cancellable, not reschedulable.
    later = lifecycle.list_patient_appointments(patient.id, now=datetime(2030, 1, 8, 6, 0))
    flags = {a.id: (a.can_cancel, a.can_reschedule) for a in later}
    assert flags[first.id] == (True, False)
    assert flags[second.id] == (True, True)


def test_list_patient_appointments_filters_by_status(lifecycle, allocator, make_slot, patient) -> None:
    """Patient listings can be narrowed to one status."""

    appointment = _book(allocator, patient, make_slot())
    lifecycle.confirm_appointment(patient.id, appointment.id)

    assert lifecycle.list_patient_appointments(patient.id, AppointmentStatus.SCHEDULED, now=NOW) == []
    confirmed = lifecycle.list_patient_appointments(patient.id, AppointmentStatus.CONFIRMED, now=NOW)
    assert [a.id for a in confirmed] == [appointment.id]


def test_list_for_unknown_patient(lifecycle) -> None:
    """Listing for a missing patient raises NotFoundError."""

    with pytest.raises(NotFoundError):
        lifecycle.list_patient_appointments(9999, now=NOW)


def test_lookup_by_reference(lifecycle, allocator, make_slot, patient) -> None:
    """References are matched case-insensitively."""

    appointment = _book(allocator, patient, make_slot())

    found = lifecycle.get_appointment_by_reference(appointment.booking_reference.lower())

    assert found.id == appointment.id
    with pytest.raises(NotFoundError):
        lifecycle.get_appointment_by_reference("APT000000")


def test_reschedule_moves_capacity_and_links_records(
    lifecycle, allocator, make_slot, patient, fetch_slot, fetch_appointment
) -> None:
    """Rescheduling frees the old unit, books a new one and links both."""

    source = make_slot("09:00", "10:00", day=TOMORROW)
    target = make_slot("14:00", "15:00", ScheduleType.STREAM, 20, day=DAY_AFTER)
    original = _book(allocator, patient, source)

    successor = lifecycle.reschedule_appointment(
        patient.id,
        original.id,
        RescheduleRequest(availability_slot_id=target.id, reason="Travel"),
        now=NOW,
    )

    assert successor.appointment_date == DAY_AFTER
    assert successor.appointment_time == "14:00:00"
    assert successor.queue_position == 1
    assert successor.status == AppointmentStatus.SCHEDULED
    assert successor.original_appointment_id == original.id
    assert successor.appointment_reason == "Annual check-up"
    assert successor.booking_reference != original.booking_reference

    stored = fetch_appointment(original.id)
    assert stored.status == AppointmentStatus.RESCHEDULED
    assert stored.rescheduled_to_appointment_id == successor.id
    assert "Travel" in stored.notes

    assert fetch_slot(source.id).current_bookings == 0
    assert fetch_slot(source.id).sub_slots[0].current_bookings == 0
    assert fetch_slot(target.id).current_bookings == 1


def test_reschedule_within_the_same_slot(lifecycle, allocator, make_slot, patient, fetch_slot) -> None:
    """An appointment can move to another time in its own slot."""

    slot = make_slot()
    original = _book(allocator, patient, slot, "09:00")

    successor = lifecycle.reschedule_appointment(
        patient.id,
        original.id,
        RescheduleRequest(availability_slot_id=slot.id, preferred_time="09:45"),
        now=NOW,
    )

    assert successor.appointment_time == "09:45:00"
    refreshed = fetch_slot(slot.id)
    assert refreshed.current_bookings == 1
    assert [s.current_bookings for s in refreshed.sub_slots] == [0, 0, 0, 1]


def test_reschedule_inside_four_hours_is_rejected(lifecycle, allocator, make_slot, patient) -> None:
    """Rescheduling closes four hours before the start."""

    source = make_slot("09:00", "10:00", day=TOMORROW)
    target = make_slot("09:00", "10:00", day=DAY_AFTER)
    original = _book(allocator, patient, source)

    with pytest.raises(ValidationError):
        lifecycle.reschedule_appointment(
            patient.id,
            original.id,
            RescheduleRequest(availability_slot_id=target.id),
            now=datetime(2030, 1, 8, 6, 0),
        )


def test_failed_reschedule_leaves_original_untouched(
    lifecycle, allocator, make_slot, make_patient, fetch_slot, fetch_appointment
) -> None:
    """A reschedule into a full slot changes nothing."""

    source = make_slot("09:00", "10:00", day=TOMORROW)
    full = make_slot("09:00", "09:15", day=DAY_AFTER)
    _book(allocator, make_patient(), full)
    patient = make_patient()
    original = _book(allocator, patient, source)

    with pytest.raises(ConflictError):
        lifecycle.reschedule_appointment(
            patient.id,
            original.id,
            RescheduleRequest(availability_slot_id=full.id),
            now=NOW,
        )

    assert fetch_appointment(original.id).status == AppointmentStatus.SCHEDULED
    assert fetch_slot(source.id).current_bookings == 1
    assert fetch_slot(full.id).current_bookings == 1


def test_cancelled_appointment_cannot_be_rescheduled(
    lifecycle, allocator, make_slot, patient, doctor, session_factory, settings
) -> None:
    """Only active appointments can be rescheduled."""

    slot = make_slot()
    original = _book(allocator, patient, slot)
    CancellationService(session_factory, settings=settings).cancel_appointment(doctor.id, original.id, CancelRequest())

    with pytest.raises(ValidationError):
        lifecycle.reschedule_appointment(
            patient.id, original.id, RescheduleRequest(availability_slot_id=slot.id), now=NOW
        )


def test_reschedule_locks_both_slots_lowest_id_first(
    lifecycle, allocator, make_slot, patient, fetch_slot, monkeypatch
) -> None:
    """Both slots are locked up front in ascending id order, whichever way the move goes."""

    target = make_slot("09:00", "10:00", day=TOMORROW)
    source = make_slot("14:00", "15:00", day=DAY_AFTER)
    original = _book(allocator, patient, source)
    locked = []
    real_lock_slot = lifecycle_module.lock_slot

    def recording_lock_slot(session, slot_id):
        locked.append(slot_id)
        return real_lock_slot(session, slot_id)

    monkeypatch.setattr(lifecycle_module, "lock_slot", recording_lock_slot)

    successor = lifecycle.reschedule_appointment(
        patient.id, original.id, RescheduleRequest(availability_slot_id=target.id), now=NOW
    )

    assert target.id < source.id
    assert locked == [target.id, source.id]
    assert successor.availability_slot_id == target.id
    assert fetch_slot(source.id).current_bookings == 0
    assert fetch_slot(target.id).current_bookings == 1


def test_list_doctor_appointments_in_chronological_order(
    lifecycle, allocator, make_slot, make_patient, make_doctor, doctor
) -> None:
    """A doctor's schedule is ordered by date, then time, and excludes other doctors."""

    afternoon = make_slot("14:00", "15:00", day=TOMORROW)
    morning = make_slot("09:00", "10:00", day=TOMORROW)
    later = make_slot("09:00", "10:00", day=DAY_AFTER)
    other = make_doctor(name="Dr. Meera Iyer")
    foreign = make_slot("09:00", "10:00", day=TOMORROW, doctor_id=other.id)

    third = _book(allocator, make_patient(), later)
    second = _book(allocator, make_patient(), afternoon)
    first = _book(allocator, make_patient(), morning)
    _book(allocator, make_patient(), foreign)

    listed = lifecycle.list_doctor_appointments(doctor.id)

    assert [a.id for a in listed] == [first.id, second.id, third.id]


def test_list_doctor_appointments_filters_by_date_and_status(
    lifecycle, allocator, make_slot, make_patient, doctor
) -> None:
    """Doctor listings can be narrowed to one date, one status or both."""

    tomorrow = make_slot("09:00", "10:00", day=TOMORROW)
    later = make_slot("09:00", "10:00", day=DAY_AFTER)
    early = _book(allocator, make_patient(), tomorrow, "09:00")
    late = _book(allocator, make_patient(), tomorrow, "09:30")
    other_day = _book(allocator, make_patient(), later)
    lifecycle.update_appointment_status(doctor.id, late.id, StatusUpdateRequest(status="confirmed"))

    on_day = lifecycle.list_doctor_appointments(doctor.id, TOMORROW)
    confirmed = lifecycle.list_doctor_appointments(doctor.id, status=AppointmentStatus.CONFIRMED)
    scheduled_on_day = lifecycle.list_doctor_appointments(doctor.id, TOMORROW, AppointmentStatus.SCHEDULED)

    assert [a.id for a in on_day] == [early.id, late.id]
    assert [a.id for a in confirmed] == [late.id]
    assert [a.id for a in scheduled_on_day] == [early.id]
    assert other_day.id not in [a.id for a in on_day]


def test_list_doctor_appointments_unknown_doctor(lifecycle) -> None:
    """Listing for a missing doctor raises NotFoundError."""

    with pytest.raises(NotFoundError):
        lifecycle.list_doctor_appointments(9999)


def test_appointment_details_for_patient_and_doctor(lifecycle, allocator, make_slot, patient, doctor) -> None:
    """Both parties see the appointment with its cutoff flags."""

    appointment = _book(allocator, patient, make_slot())

    as_patient = lifecycle.get_appointment_details(appointment.id, patient_id=patient.id, now=NOW)
    as_doctor = lifecycle.get_appointment_details(
        appointment.id, doctor_id=doctor.id, now=datetime(2030, 1, 8, 6, 0)
    )

    assert as_patient.id == as_doctor.id == appointment.id
    assert as_patient.booking_reference == appointment.booking_reference
    assert (as_patient.can_cancel, as_patient.can_reschedule) == (True, True)
    assert (as_doctor.can_cancel, as_doctor.can_reschedule) == (True, False)


def test_appointment_details_hidden_from_other_parties(
    lifecycle, allocator, make_slot, make_patient, make_doctor, patient
) -> None:
    """Callers who are not party to the appointment see NotFoundError."""

    appointment = _book(allocator, patient, make_slot())
    stranger = make_patient()
    other_doctor = make_doctor(name="Dr. Meera Iyer")

    with pytest.raises(NotFoundError):
        lifecycle.get_appointment_details(appointment.id, patient_id=stranger.id, now=NOW)
    with pytest.raises(NotFoundError):
        lifecycle.get_appointment_details(appointment.id, doctor_id=other_doctor.id, now=NOW)
    with pytest.raises(NotFoundError):
        lifecycle.get_appointment_details(9999, patient_id=patient.id, now=NOW)
    with pytest.raises(ValidationError):
        lifecycle.get_appointment_details(appointment.id, now=NOW)
