import os
from datetime import date, time
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from agenda.database import Base  # noqa: E402
from agenda.models.agent import Agent  # noqa: E402
from agenda.models.appointment import Appointment, AppointmentServiceLink, AppointmentStatus  # noqa: E402
from agenda.models.calendar_exception import CalendarException  # noqa: E402,F401
from agenda.models.client import Client  # noqa: E402
from agenda.models.location import BusinessHours, Location  # noqa: E402
from agenda.models.notification import NotificationRecord  # noqa: E402,F401
from agenda.models.service import Service  # noqa: E402

# 2026-03-02 is a Monday (weekday index 1 with 0 = Sunday).
MONDAY = date(2026, 3, 2)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'agenda.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def agenda_db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def seed_salon(db) -> SimpleNamespace:
    """One location open Mondays 09:00-12:00 with one agent, one client and two services."""
    location = Location(name='Centro', address='Rua A, 10', phone='(11) 3333-4444')
    agent = Agent(first_name='Ana', last_name='Lima', phone='(11) 98888-7777')
    client = Client(first_name='Bruno', last_name='Costa', phone='(11) 97777-6666')
    haircut = Service(name='Haircut', price=Decimal('50.00'), duration_minutes=60)
    beard = Service(name='Beard trim', price=Decimal('30.00'), duration_minutes=30)
    db.add_all([location, agent, client, haircut, beard])
    db.flush()

    db.add(
        BusinessHours(
            location_id=location.id,
            weekday=1,
            is_open=True,
            periods=[{'start': '09:00', 'end': '12:00'}],
        )
    )
    db.commit()

    return SimpleNamespace(
        location_id=location.id,
        agent_id=agent.id,
        client_id=client.id,
        haircut_id=haircut.id,
        beard_id=beard.id,
        day=MONDAY,
    )


@pytest.fixture
def salon(agenda_db):
    return seed_salon(agenda_db)


@pytest.fixture
def salon_seeder():
    return seed_salon


@pytest.fixture
def make_appointment(agenda_db, salon):
    def _make(start: time, end: time, status: str = AppointmentStatus.CONFIRMED.value, day: date | None = None):
        appointment = Appointment(
            location_id=salon.location_id,
            agent_id=salon.agent_id,
            client_id=salon.client_id,
            appointment_date=day or salon.day,
            start_time=start,
            end_time=end,
            status=status,
            total_value=Decimal('50.00'),
        )
        appointment.service_links.append(
            AppointmentServiceLink(position=0, service_id=salon.haircut_id, applied_price=Decimal('50.00'))
        )
        agenda_db.add(appointment)
        agenda_db.commit()
        agenda_db.refresh(appointment)
        return appointment

    return _make


@pytest.fixture
def set_opening_hours(agenda_db, salon):
    def _set(periods: list[dict]) -> None:
        hours = agenda_db.query(BusinessHours).filter(BusinessHours.location_id == salon.location_id).one()
        hours.periods = periods
        agenda_db.commit()

    return _set
