import threading
from datetime import date, time
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from agenda.database import Base, create_db_engine
from agenda.models.appointment import Appointment, AppointmentStatus
from agenda.scheduling import booking
from agenda.scheduling.availability import get_available_slots
from agenda.scheduling.business_hours import CLOSED_DAY
from agenda.scheduling.exceptions import (
    AppointmentNotFoundError,
    InvalidAppointmentStateError,
    OutsideBusinessHoursError,
    SlotConflictError,
    UnknownServiceError,
)


def _request(salon, start_minutes: int, service_ids=None, day: date | None = None) -> booking.BookingRequest:
    return booking.BookingRequest(
        location_id=salon.location_id,
        agent_id=salon.agent_id,
        client_id=salon.client_id,
        day=day or salon.day,
        start_minutes=start_minutes,
        service_ids=service_ids if service_ids is not None else [salon.haircut_id],
    )


def test_try_create_persists_appointment_with_services_and_total(agenda_db, salon) -> None:
    appointment = booking.try_create(agenda_db, _request(salon, 9 * 60, [salon.haircut_id, salon.beard_id]))

    assert appointment.id is not None
    assert appointment.start_time == time(9, 0)
    assert appointment.end_time == time(10, 30)
    assert appointment.status == AppointmentStatus.APPROVED.value
    assert appointment.service_ids == [salon.haircut_id, salon.beard_id]
    assert Decimal(appointment.total_value) == Decimal('80.00')


def test_try_create_rejects_overlapping_interval(agenda_db, salon, make_appointment) -> None:
    existing = make_appointment(time(10, 0), time(11, 0))

    with pytest.raises(SlotConflictError) as exception_info:
        booking.try_create(agenda_db, _request(salon, 10 * 60 + 30))

    assert exception_info.value.conflicting_ids == [existing.id]
    assert agenda_db.query(Appointment).count() == 1


def test_try_create_allows_touching_intervals(agenda_db, salon, make_appointment) -> None:
    make_appointment(time(10, 0), time(11, 0))

    before = booking.try_create(agenda_db, _request(salon, 9 * 60))
    after = booking.try_create(agenda_db, _request(salon, 11 * 60))

    assert before.end_time == time(10, 0)
    assert after.start_time == time(11, 0)


def test_try_create_rejects_closed_day(agenda_db, salon) -> None:
    with pytest.raises(OutsideBusinessHoursError) as exception_info:
        booking.try_create(agenda_db, _request(salon, 9 * 60, day=date(2026, 3, 3)))

    assert exception_info.value.reason == CLOSED_DAY


def test_try_create_rejects_interval_past_closing(agenda_db, salon) -> None:
    with pytest.raises(OutsideBusinessHoursError):
        booking.try_create(agenda_db, _request(salon, 11 * 60 + 30))


def test_try_create_rejects_unknown_services(agenda_db, salon) -> None:
    with pytest.raises(UnknownServiceError) as exception_info:
        booking.try_create(agenda_db, _request(salon, 9 * 60, [salon.haircut_id, 999]))

    assert exception_info.value.missing_ids == [999]

    with pytest.raises(UnknownServiceError):
        booking.try_create(agenda_db, _request(salon, 9 * 60, []))


def test_cancel_frees_the_slot(agenda_db, salon) -> None:
    appointment = booking.try_create(agenda_db, _request(salon, 10 * 60))

    booking.cancel(agenda_db, appointment.id)
    slots = get_available_slots(agenda_db, salon.agent_id, salon.location_id, salon.day, 60)
    rebooked = booking.try_create(agenda_db, _request(salon, 10 * 60))

    assert '10:00' in [slot.start_label for slot in slots.slots]
    assert rebooked.id != appointment.id


def test_cancel_twice_is_an_invalid_transition(agenda_db, salon) -> None:
    appointment = booking.try_create(agenda_db, _request(salon, 10 * 60))
    booking.cancel(agenda_db, appointment.id)

    with pytest.raises(InvalidAppointmentStateError):
        booking.cancel(agenda_db, appointment.id)


def test_missing_appointment_raises_not_found(agenda_db, salon) -> None:
    with pytest.raises(AppointmentNotFoundError):
        booking.complete(agenda_db, 999)


def test_reschedule_ignores_its_own_interval(agenda_db, salon) -> None:
    appointment = booking.try_create(agenda_db, _request(salon, 9 * 60))

    moved, previous = booking.reschedule(agenda_db, appointment.id, salon.day, 9 * 60 + 30)

    assert previous.label() == '09:00-10:00'
    assert moved.start_time == time(9, 30)
    assert moved.end_time == time(10, 30)


def test_reschedule_into_another_booking_conflicts(agenda_db, salon, make_appointment) -> None:
    make_appointment(time(11, 0), time(12, 0))
    appointment = booking.try_create(agenda_db, _request(salon, 9 * 60))

    with pytest.raises(SlotConflictError):
        booking.reschedule(agenda_db, appointment.id, salon.day, 11 * 60)

    agenda_db.refresh(appointment)
    assert appointment.start_time == time(9, 0)


def test_completed_appointment_cannot_be_rescheduled(agenda_db, salon) -> None:
    appointment = booking.try_create(agenda_db, _request(salon, 9 * 60))
    booking.complete(agenda_db, appointment.id)

    with pytest.raises(InvalidAppointmentStateError):
        booking.reschedule(agenda_db, appointment.id, salon.day, 10 * 60)


def test_confirm_moves_approved_to_confirmed(agenda_db, salon) -> None:
    appointment = booking.try_create(agenda_db, _request(salon, 9 * 60))

    confirmed = booking.confirm(agenda_db, appointment.id)

    assert confirmed.status == AppointmentStatus.CONFIRMED.value


def test_active_appointments_never_overlap_after_mixed_operations(agenda_db, salon) -> None:
    for start_minutes in (9 * 60, 9 * 60 + 30, 10 * 60, 10 * 60 + 15, 11 * 60, 11 * 60 + 30):
        try:
            booking.try_create(agenda_db, _request(salon, start_minutes))
        except (SlotConflictError, OutsideBusinessHoursError):
            pass

    active = [
        appointment.interval
        for appointment in agenda_db.query(Appointment).all()
        if appointment.is_active
    ]
    for index, interval in enumerate(active):
        assert not any(interval.overlaps(other) for other in active[index + 1:])
    assert len(active) == 3


def test_concurrent_requests_for_same_slot_book_exactly_once(tmp_path, salon_seeder) -> None:
    engine = create_db_engine(
        f"sqlite:///{tmp_path / 'concurrent.db'}",
        connect_args={'check_same_thread': False, 'timeout': 15},
    )
    Base.metadata.create_all(bind=engine)
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    seed_db = session_local()
    try:
        salon = salon_seeder(seed_db)
    finally:
        seed_db.close()

    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def book() -> None:
        db = session_local()
        try:
            barrier.wait()
            booking.try_create(db, _request(salon, 10 * 60))
            result = 'created'
        except SlotConflictError:
            result = 'conflict'
        finally:
            db.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=book) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    check_db = session_local()
    try:
        stored = check_db.query(Appointment).filter(Appointment.status != AppointmentStatus.CANCELLED.value).count()
    finally:
        check_db.close()
        engine.dispose()

    assert sorted(outcomes) == ['conflict', 'created']
    assert stored == 1


def test_booking_the_last_slot_of_the_day_stores_end_of_day(agenda_db, salon, set_opening_hours) -> None:
    set_opening_hours([{'start': '00:00', 'end': '24:00'}])

    appointment = booking.try_create(agenda_db, _request(salon, 23 * 60))
    agenda_db.expire_all()

    assert appointment.start_time == time(23, 0)
    assert appointment.end_time == time.max
    assert appointment.interval.end == 24 * 60

    with pytest.raises(SlotConflictError):
        booking.try_create(agenda_db, _request(salon, 23 * 60 + 30, [salon.beard_id]))


def test_booking_past_midnight_is_outside_business_hours(agenda_db, salon, set_opening_hours) -> None:
    set_opening_hours([{'start': '00:00', 'end': '24:00'}])

    with pytest.raises(OutsideBusinessHoursError):
        booking.try_create(agenda_db, _request(salon, 23 * 60 + 30))

    assert agenda_db.query(Appointment).count() == 0


def test_booking_may_span_back_to_back_periods(agenda_db, salon, set_opening_hours) -> None:
    set_opening_hours([{'start': '09:00', 'end': '10:30'}, {'start': '10:30', 'end': '12:00'}])

    appointment = booking.try_create(agenda_db, _request(salon, 10 * 60))

    assert (appointment.start_time, appointment.end_time) == (time(10, 0), time(11, 0))
