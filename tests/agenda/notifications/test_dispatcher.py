import asyncio
import threading
from datetime import date, time

from agenda.database import create_db_engine
from agenda.models.appointment import Appointment, AppointmentStatus
from agenda.models.client import Client
from agenda.models.notification import NotificationKind, NotificationRecord, NotificationStatus
from agenda.notifications.delivery_queue import DeliveryQueue
from agenda.notifications.dispatcher import NotificationDispatcher
from agenda.notifications.gateway import SendResult, SimulatedGateway
from agenda.notifications.views import PreviousSchedule


class HangingGateway:
    async def send_text(self, phone: str, message: str) -> SendResult:
        await asyncio.sleep(60)
        return SendResult.ok('never')


class FlakyGateway:
    def __init__(self):
        self.calls = 0

    async def send_text(self, phone: str, message: str) -> SendResult:
        self.calls += 1
        if self.calls == 1:
            return SendResult.failed('HTTP 503: instance reconnecting')
        return SendResult.ok(f'MSG-{self.calls}')


def _notify(session_factory, gateway, appointment_id, kind, previous=None, **dispatcher_options):
    async def scenario():
        queue = DeliveryQueue(gateway, send_timeout=0.05)
        dispatcher = NotificationDispatcher(session_factory, queue, **dispatcher_options)
        try:
            return await dispatcher.notify_appointment_event(appointment_id, kind, previous)
        finally:
            await queue.stop()

    return asyncio.run(scenario())


def _records(agenda_db, appointment_id):
    return agenda_db.query(NotificationRecord).filter(
        NotificationRecord.appointment_id == appointment_id,
    ).order_by(NotificationRecord.id.asc()).all()


def test_confirmation_goes_to_client_and_staff(agenda_db, session_factory, make_appointment) -> None:
    appointment = make_appointment(time(9, 0), time(10, 0))
    gateway = SimulatedGateway()

    outcomes = _notify(session_factory, gateway, appointment.id, NotificationKind.CONFIRMATION)

    records = _records(agenda_db, appointment.id)
    assert [outcome.audience for outcome in outcomes] == ['client', 'staff']
    assert all(outcome.success for outcome in outcomes)
    assert [record.target_phone for record in records] == ['(11) 97777-6666', '(11) 98888-7777']
    assert {record.status for record in records} == {NotificationStatus.SENT.value}
    assert records[0].provider_message_id == 'SIM-00001'
    assert 'Appointment confirmed' in records[0].rendered_message
    assert 'New appointment' in records[1].rendered_message


def test_gateway_timeout_records_failure_without_touching_appointment(
    agenda_db,
    session_factory,
    make_appointment,
) -> None:
    appointment = make_appointment(time(9, 0), time(10, 0))

    outcomes = _notify(session_factory, HangingGateway(), appointment.id, NotificationKind.REMINDER_24H)

    records = _records(agenda_db, appointment.id)
    assert len(outcomes) == 1
    assert not outcomes[0].success
    assert len(records) == 1
    assert records[0].status == NotificationStatus.FAILED.value
    assert records[0].attempts == 1
    assert records[0].error_detail.startswith('timeout')

    agenda_db.refresh(appointment)
    assert appointment.status == AppointmentStatus.CONFIRMED.value
    assert agenda_db.query(Appointment).count() == 1


def test_reschedule_passes_previous_schedule_to_templates(agenda_db, session_factory, make_appointment) -> None:
    appointment = make_appointment(time(11, 0), time(12, 0))
    previous = PreviousSchedule(date(2026, 3, 2), time(9, 0), time(10, 0))

    _notify(session_factory, SimulatedGateway(), appointment.id, NotificationKind.RESCHEDULE, previous)

    client_record = _records(agenda_db, appointment.id)[0]
    assert 'Previously: Monday, March 2, 2026 at 09:00' in client_record.rendered_message


def test_client_without_phone_only_notifies_staff(agenda_db, session_factory, salon, make_appointment) -> None:
    appointment = make_appointment(time(9, 0), time(10, 0))
    client = agenda_db.get(Client, salon.client_id)
    client.phone = None
    agenda_db.commit()

    outcomes = _notify(session_factory, SimulatedGateway(), appointment.id, NotificationKind.CANCELLATION)

    assert [outcome.audience for outcome in outcomes] == ['staff']


def test_disabled_dispatcher_sends_nothing(agenda_db, session_factory, make_appointment) -> None:
    appointment = make_appointment(time(9, 0), time(10, 0))
    gateway = SimulatedGateway()

    outcomes = _notify(session_factory, gateway, appointment.id, NotificationKind.CONFIRMATION, enabled=False)

    assert outcomes == []
    assert gateway.sent == []
    assert _records(agenda_db, appointment.id) == []


def test_missing_appointment_is_logged_not_raised(session_factory, salon) -> None:
    assert _notify(session_factory, SimulatedGateway(), 999, NotificationKind.CONFIRMATION) == []


def test_unexpected_errors_never_escape(session_factory, salon) -> None:
    def broken_factory():
        raise RuntimeError('database exploded')

    assert _notify(broken_factory, SimulatedGateway(), 1, NotificationKind.CONFIRMATION) == []


def test_retry_failed_resends_stored_message(agenda_db, session_factory, make_appointment) -> None:
    appointment = make_appointment(time(9, 0), time(10, 0))
    gateway = FlakyGateway()

    async def scenario():
        queue = DeliveryQueue(gateway)
        dispatcher = NotificationDispatcher(session_factory, queue, max_attempts=3)
        try:
            first = await dispatcher.notify_appointment_event(appointment.id, NotificationKind.REMINDER_2H)
            summary = await dispatcher.retry_failed()
            return first, summary
        finally:
            await queue.stop()

    first, summary = asyncio.run(scenario())

    records = _records(agenda_db, appointment.id)
    assert not first[0].success
    assert summary == {'retried': 1, 'sent': 1, 'failed': 0}
    assert len(records) == 1
    assert records[0].status == NotificationStatus.SENT.value
    assert records[0].attempts == 2
    assert records[0].provider_message_id == 'MSG-2'


def test_reminder_already_sent_to_a_phone_is_not_resent(agenda_db, session_factory, make_appointment) -> None:
    appointment = make_appointment(time(9, 0), time(10, 0))
    gateway = SimulatedGateway()
    _notify(session_factory, gateway, appointment.id, NotificationKind.REMINDER_2H)

    outcomes = _notify(session_factory, gateway, appointment.id, NotificationKind.REMINDER_2H)

    assert outcomes == []
    assert len(gateway.sent) == 1
    assert len(_records(agenda_db, appointment.id)) == 1


def test_ledger_writes_wait_off_the_event_loop(agenda_db, session_factory, make_appointment, tmp_path) -> None:
    appointment = make_appointment(time(9, 0), time(10, 0))
    writer = create_db_engine(f"sqlite:///{tmp_path / 'agenda.db'}")
    locked = threading.Event()

    def hold_write_lock() -> None:
        with writer.begin():
            locked.set()
            threading.Event().wait(0.5)

    async def scenario():
        queue = DeliveryQueue(SimulatedGateway())
        dispatcher = NotificationDispatcher(session_factory, queue)
        loop = asyncio.get_running_loop()
        stalls = []
        finished = asyncio.Event()

        async def ticker() -> None:
            last = loop.time()
            while not finished.is_set():
                await asyncio.sleep(0.02)
                now = loop.time()
                stalls.append(now - last)
                last = now

        holder = threading.Thread(target=hold_write_lock)
        holder.start()
        locked.wait(5)
        ticking = asyncio.create_task(ticker())
        try:
            outcomes = await dispatcher.notify_appointment_event(appointment.id, NotificationKind.CONFIRMATION)
        finally:
            finished.set()
            await ticking
            await queue.stop()
            holder.join()
        return outcomes, max(stalls)

    try:
        outcomes, longest_stall = asyncio.run(scenario())
    finally:
        writer.dispose()

    assert [outcome.success for outcome in outcomes] == [True, True]
    assert longest_stall < 0.2
    assert len(_records(agenda_db, appointment.id)) == 2
