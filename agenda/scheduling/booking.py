"""Conflict-safe creation and mutation of appointments.

Every write path takes the per-agent, per-day schedule lock from ``agenda.database``
before re-reading the agent's active appointments, so the overlap check and the insert
happen in the same serialized transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.database import is_overlap_violation, lock_schedule
from agenda.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentServiceLink, AppointmentStatus
from agenda.models.service import Service
from agenda.scheduling.availability import fetch_active_appointments
from agenda.scheduling.business_hours import resolve_open_periods
from agenda.scheduling.exceptions import (
    AppointmentNotFoundError,
    InvalidAppointmentStateError,
    OutsideBusinessHoursError,
    SchedulingError,
    SlotConflictError,
    UnknownServiceError,
)
from agenda.scheduling.intervals import Interval, format_minutes

logger = logging.getLogger(__name__)


@dataclass
class BookingRequest:
    location_id: int
    agent_id: int
    client_id: int
    day: date
    start_minutes: int
    service_ids: list[int] = field(default_factory=list)
    notes: str | None = None
    # Overrides the summed service duration when set.
    end_minutes: int | None = None
    status: str = AppointmentStatus.APPROVED.value


def load_services(db: Session, service_ids: list[int]) -> list[Service]:
    if not service_ids:
        raise UnknownServiceError("At least one service is required.")

    found = {
        service.id: service
        for service in db.query(Service).filter(Service.id.in_(set(service_ids))).all()
        if service.is_active
    }
    missing = [service_id for service_id in service_ids if service_id not in found]
    if missing:
        raise UnknownServiceError(f"Unknown or inactive services: {missing}", missing_ids=missing)

    return [found[service_id] for service_id in service_ids]


def build_interval(day: date, start_minutes: int, end_minutes: int) -> Interval:
    try:
        return Interval(day, start_minutes, end_minutes)
    except ValueError as exc:
        raise OutsideBusinessHoursError(
            f"Interval {format_minutes(start_minutes)}-{format_minutes(end_minutes)} is not a valid time range.",
        ) from exc


def ensure_within_open_hours(db: Session, location_id: int, agent_id: int, interval: Interval) -> None:
    open_periods = resolve_open_periods(db, location_id, agent_id, interval.day)

    if not open_periods.is_open:
        raise OutsideBusinessHoursError(
            f"No open hours on {interval.day.isoformat()}.",
            reason=open_periods.reason,
        )

    if not open_periods.covers(interval):
        raise OutsideBusinessHoursError(
            f"Interval {interval.label()} falls outside the open periods.",
            reason="OutOfWindow",
        )


def find_conflicts(
    db: Session,
    agent_id: int,
    interval: Interval,
    exclude_appointment_id: int | None = None,
) -> list[Appointment]:
    return [
        appointment
        for appointment in fetch_active_appointments(db, agent_id, interval.day, exclude_appointment_id)
        if appointment.interval.overlaps(interval)
    ]


def _ensure_slot_free(
    db: Session,
    agent_id: int,
    interval: Interval,
    exclude_appointment_id: int | None = None,
) -> None:
    lock_schedule(db, agent_id, interval.day)

    conflicts = find_conflicts(db, agent_id, interval, exclude_appointment_id)
    if conflicts:
        logger.info(
            "Slot %s on %s for agent %s conflicts with appointments %s",
            interval.label(),
            interval.day,
            agent_id,
            [appointment.id for appointment in conflicts],
        )
        raise SlotConflictError(conflicting_ids=[appointment.id for appointment in conflicts])


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if is_overlap_violation(exc):
            raise SlotConflictError(cause=exc) from exc
        raise


def _get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise AppointmentNotFoundError(f"Appointment {appointment_id} not found.")
    return appointment


def try_create(db: Session, request: BookingRequest) -> Appointment:
    try:
        services = load_services(db, request.service_ids)

        if request.end_minutes is not None:
            end_minutes = request.end_minutes
        else:
            end_minutes = request.start_minutes + sum(service.duration_minutes for service in services)

        interval = build_interval(request.day, request.start_minutes, end_minutes)
        ensure_within_open_hours(db, request.location_id, request.agent_id, interval)
        _ensure_slot_free(db, request.agent_id, interval)

        appointment = Appointment(
            location_id=request.location_id,
            agent_id=request.agent_id,
            client_id=request.client_id,
            appointment_date=interval.day,
            start_time=interval.start_time,
            end_time=interval.end_time,
            status=request.status,
            total_value=sum((Decimal(service.price or 0) for service in services), Decimal("0")),
            notes=request.notes,
        )
        for position, service in enumerate(services):
            appointment.service_links.append(
                AppointmentServiceLink(position=position, service_id=service.id, applied_price=service.price)
            )

        db.add(appointment)
        _commit(db)
        db.refresh(appointment)
    except (SchedulingError, SQLAlchemyError):
        db.rollback()
        raise

    logger.info(
        "Created appointment %s for agent %s on %s %s",
        appointment.id,
        appointment.agent_id,
        appointment.appointment_date,
        interval.label(),
    )
    return appointment


# Name used by callers outside the scheduling package.
create_appointment = try_create


def reschedule(
    db: Session,
    appointment_id: int,
    new_day: date,
    new_start_minutes: int,
    agent_id: int | None = None,
) -> tuple[Appointment, Interval]:
    """Move an active appointment, keeping its duration. Returns it with its previous interval."""
    try:
        appointment = _get_appointment(db, appointment_id)
        if appointment.status not in ACTIVE_STATUSES:
            raise InvalidAppointmentStateError(
                f"Appointment {appointment_id} is {appointment.status} and cannot be rescheduled."
            )

        previous = appointment.interval
        target_agent_id = agent_id if agent_id is not None else appointment.agent_id
        interval = build_interval(new_day, new_start_minutes, new_start_minutes + previous.duration_minutes())

        ensure_within_open_hours(db, appointment.location_id, target_agent_id, interval)
        _ensure_slot_free(db, target_agent_id, interval, exclude_appointment_id=appointment.id)

        appointment.agent_id = target_agent_id
        appointment.appointment_date = interval.day
        appointment.start_time = interval.start_time
        appointment.end_time = interval.end_time
        _commit(db)
        db.refresh(appointment)
    except (SchedulingError, SQLAlchemyError):
        db.rollback()
        raise

    logger.info("Rescheduled appointment %s from %s %s to %s %s", appointment_id, previous.day, previous.label(), interval.day, interval.label())
    return appointment, previous


def _transition(db: Session, appointment_id: int, allowed: tuple[str, ...], target: AppointmentStatus) -> Appointment:
    try:
        appointment = _get_appointment(db, appointment_id)
        if appointment.status not in allowed:
            raise InvalidAppointmentStateError(
                f"Appointment {appointment_id} is {appointment.status} and cannot become {target.value}."
            )

        appointment.status = target.value
        db.commit()
        db.refresh(appointment)
    except (SchedulingError, SQLAlchemyError):
        db.rollback()
        raise

    logger.info("Appointment %s is now %s", appointment_id, target.value)
    return appointment


def cancel(db: Session, appointment_id: int) -> Appointment:
    return _transition(db, appointment_id, ACTIVE_STATUSES, AppointmentStatus.CANCELLED)


def complete(db: Session, appointment_id: int) -> Appointment:
    return _transition(db, appointment_id, ACTIVE_STATUSES, AppointmentStatus.COMPLETED)


def confirm(db: Session, appointment_id: int) -> Appointment:
    return _transition(db, appointment_id, (AppointmentStatus.APPROVED.value,), AppointmentStatus.CONFIRMED)
