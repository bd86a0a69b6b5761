from datetime import date, time

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.database import get_db
from agenda.models.appointment import Appointment
from agenda.models.notification import NotificationKind
from agenda.notifications.dispatcher import NotificationDispatcher
from agenda.notifications.views import PreviousSchedule
from agenda.routes.availability_routes import DATABASE_UNAVAILABLE_DETAIL, ensure_database_ready
from agenda.routes.notification_routes import get_dispatcher
from agenda.scheduling import booking
from agenda.scheduling.exceptions import (
    AppointmentNotFoundError,
    InvalidAppointmentStateError,
    OutsideBusinessHoursError,
    SchedulingError,
    SlotConflictError,
    UnknownServiceError,
)
from agenda.scheduling.intervals import time_to_minutes

router = APIRouter(tags=['appointments'])

MAX_APPOINTMENT_NOTES_LENGTH = 600

SCHEDULING_ERROR_STATUS = (
    (SlotConflictError, status.HTTP_409_CONFLICT),
    (OutsideBusinessHoursError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnknownServiceError, status.HTTP_404_NOT_FOUND),
    (AppointmentNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidAppointmentStateError, status.HTTP_409_CONFLICT),
)


class CreateAppointmentRequest(BaseModel):
    location_id: int
    agent_id: int
    client_id: int
    date: date
    start_time: time
    end_time: time | None = None
    service_ids: list[int]
    notes: str | None = None

    @field_validator('service_ids')
    @classmethod
    def validate_service_ids(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError('At least one service is required.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class RescheduleAppointmentRequest(BaseModel):
    date: date
    start_time: time
    agent_id: int | None = None


class AppointmentResponse(BaseModel):
    id: int
    location_id: int
    agent_id: int
    client_id: int
    date: date
    start_time: time
    end_time: time
    status: str
    total_value: float
    service_ids: list[int]
    notes: str | None = None


def to_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        location_id=appointment.location_id,
        agent_id=appointment.agent_id,
        client_id=appointment.client_id,
        date=appointment.appointment_date,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        status=appointment.status,
        total_value=float(appointment.total_value or 0),
        service_ids=appointment.service_ids,
        notes=appointment.notes,
    )


def raise_for_scheduling_error(exc: SchedulingError):
    for error_type, status_code in SCHEDULING_ERROR_STATUS:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=exc.message) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc


def raise_database_unavailable(exc: SQLAlchemyError):
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    ) from exc


def queue_notification(
    background_tasks: BackgroundTasks,
    dispatcher: NotificationDispatcher | None,
    appointment_id: int,
    kind: NotificationKind,
    previous: PreviousSchedule | None = None,
) -> None:
    if dispatcher is None:
        return
    background_tasks.add_task(dispatcher.notify_appointment_event, appointment_id, kind.value, previous)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
):
    ensure_database_ready()

    request = booking.BookingRequest(
        location_id=data.location_id,
        agent_id=data.agent_id,
        client_id=data.client_id,
        day=data.date,
        start_minutes=time_to_minutes(data.start_time),
        end_minutes=time_to_minutes(data.end_time) if data.end_time else None,
        service_ids=data.service_ids,
        notes=data.notes,
    )

    try:
        appointment = booking.create_appointment(db, request)
    except SchedulingError as exc:
        raise_for_scheduling_error(exc)
    except SQLAlchemyError as exc:
        raise_database_unavailable(exc)

    queue_notification(background_tasks, dispatcher, appointment.id, NotificationKind.CONFIRMATION)
    return to_response(appointment)


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
):
    ensure_database_ready()

    try:
        appointment, previous = booking.reschedule(
            db,
            appointment_id,
            data.date,
            time_to_minutes(data.start_time),
            agent_id=data.agent_id,
        )
    except SchedulingError as exc:
        raise_for_scheduling_error(exc)
    except SQLAlchemyError as exc:
        raise_database_unavailable(exc)

    queue_notification(
        background_tasks,
        dispatcher,
        appointment.id,
        NotificationKind.RESCHEDULE,
        PreviousSchedule.from_interval(previous),
    )
    return to_response(appointment)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
):
    ensure_database_ready()

    try:
        appointment = booking.cancel(db, appointment_id)
    except SchedulingError as exc:
        raise_for_scheduling_error(exc)
    except SQLAlchemyError as exc:
        raise_database_unavailable(exc)

    queue_notification(background_tasks, dispatcher, appointment.id, NotificationKind.CANCELLATION)
    return to_response(appointment)


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment = booking.confirm(db, appointment_id)
    except SchedulingError as exc:
        raise_for_scheduling_error(exc)
    except SQLAlchemyError as exc:
        raise_database_unavailable(exc)

    return to_response(appointment)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment = booking.complete(db, appointment_id)
    except SchedulingError as exc:
        raise_for_scheduling_error(exc)
    except SQLAlchemyError as exc:
        raise_database_unavailable(exc)

    return to_response(appointment)
