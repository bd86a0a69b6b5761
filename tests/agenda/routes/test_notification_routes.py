import asyncio
from datetime import time
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from agenda.models.notification import NotificationKind
from agenda.notifications.delivery_queue import DeliveryQueue
from agenda.notifications.dispatcher import NotificationDispatcher
from agenda.notifications.gateway import SendResult, SimulatedGateway
from agenda.notifications.ledger import DeliveryLedger
from agenda.routes.notification_routes import (
    gateway_status,
    get_dispatcher,
    list_notifications,
    normalize_kind,
    notification_stats,
    require_dispatcher,
    retry_failed_notifications,
    run_reminders,
)

PHONE = '(11) 97777-6666'


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('agenda.routes.notification_routes.ensure_database_ready', lambda: None)


@pytest.fixture
def seeded_ledger(agenda_db, make_appointment):
    appointment = make_appointment(time(10, 0), time(11, 0))
    ledger = DeliveryLedger(agenda_db)
    ledger.record_attempt(appointment.id, appointment.location_id, NotificationKind.CONFIRMATION, PHONE, SendResult.ok('a'))
    ledger.record_attempt(
        appointment.id,
        appointment.location_id,
        NotificationKind.REMINDER_24H,
        PHONE,
        SendResult.failed('HTTP 500'),
        rendered_message='reminder',
    )
    return appointment


def test_list_notifications_filters_by_status(agenda_db, seeded_ledger) -> None:
    response = list_notifications(
        location_id=None,
        appointment_id=seeded_ledger.id,
        kind=None,
        notification_status='Failed',
        page=1,
        limit=20,
        db=agenda_db,
    )

    assert response.total == 1
    assert response.items[0].kind == 'Reminder24h'
    assert response.items[0].error_detail == 'HTTP 500'


def test_list_notifications_rejects_unknown_kind(agenda_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_notifications(
            location_id=None,
            appointment_id=None,
            kind='Birthday',
            notification_status=None,
            page=1,
            limit=20,
            db=agenda_db,
        )

    assert exception_info.value.status_code == 400


def test_notification_stats_groups_by_kind(agenda_db, seeded_ledger) -> None:
    stats = notification_stats(location_id=None, db=agenda_db)

    assert stats['Confirmation']['sent'] == 1
    assert stats['Reminder24h']['failed'] == 1


def test_normalize_kind_accepts_enum_values() -> None:
    assert normalize_kind('Reminder2h') == 'Reminder2h'
    assert normalize_kind(None) is None


def test_dispatcher_dependencies() -> None:
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))

    assert get_dispatcher(request) is None
    with pytest.raises(HTTPException) as exception_info:
        require_dispatcher(None)

    assert exception_info.value.status_code == 503


def test_run_reminders_endpoint_returns_summary(session_factory, make_appointment) -> None:
    make_appointment(time(10, 0), time(11, 0))

    async def scenario():
        queue = DeliveryQueue(SimulatedGateway())
        dispatcher = NotificationDispatcher(session_factory, queue)
        try:
            return await run_reminders('Reminder2h', dispatcher=dispatcher)
        finally:
            await queue.stop()

    response = asyncio.run(scenario())

    assert response.kind == 'Reminder2h'
    assert response.failed == 0


def test_run_reminders_rejects_non_reminder_kind(session_factory) -> None:
    dispatcher = NotificationDispatcher(session_factory, DeliveryQueue(SimulatedGateway()))

    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(run_reminders('Confirmation', dispatcher=dispatcher))

    assert exception_info.value.status_code == 400


def test_retry_endpoint_resends_failed_notifications(session_factory, seeded_ledger) -> None:
    async def scenario():
        queue = DeliveryQueue(SimulatedGateway())
        dispatcher = NotificationDispatcher(session_factory, queue)
        try:
            return await retry_failed_notifications(limit=50, dispatcher=dispatcher)
        finally:
            await queue.stop()

    response = asyncio.run(scenario())

    assert (response.retried, response.sent, response.failed) == (1, 1, 0)


def test_gateway_status_reports_simulated_connection(session_factory) -> None:
    dispatcher = NotificationDispatcher(session_factory, DeliveryQueue(SimulatedGateway()))

    response = asyncio.run(gateway_status(dispatcher=dispatcher))

    assert response == {'connected': True, 'state': 'simulated', 'error': None}
