from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy.orm import Session

from agenda.models.appointment import Appointment, AppointmentStatus
from agenda.scheduling.business_hours import resolve_open_periods
from agenda.scheduling.intervals import Interval, format_minutes


@dataclass(frozen=True)
class Slot:
    start: int
    end: int
    available: bool = True

    @property
    def start_label(self) -> str:
        return format_minutes(self.start)

    @property
    def end_label(self) -> str:
        return format_minutes(self.end)


@dataclass(frozen=True)
class AvailabilityResult:
    day: date
    slots: list[Slot] = field(default_factory=list)
    reason: str | None = None


def fetch_active_appointments(
    db: Session,
    agent_id: int,
    day: date,
    exclude_appointment_id: int | None = None,
) -> list[Appointment]:
    query = db.query(Appointment).filter(
        Appointment.agent_id == agent_id,
        Appointment.appointment_date == day,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)
    return query.order_by(Appointment.start_time.asc()).all()


def fetch_busy_intervals(
    db: Session,
    agent_id: int,
    day: date,
    exclude_appointment_id: int | None = None,
) -> list[Interval]:
    return [
        appointment.interval
        for appointment in fetch_active_appointments(db, agent_id, day, exclude_appointment_id)
    ]


def candidate_slots(
    periods: list[Interval],
    busy: list[Interval],
    duration_minutes: int,
    not_before: datetime | None = None,
) -> list[Slot]:
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive.")

    slots = []
    for period in periods:
        start = period.start
        while start + duration_minutes <= period.end:
            candidate = Interval(period.day, start, start + duration_minutes)
            start += duration_minutes

            if not_before is not None and candidate.starts_at < not_before:
                continue
            if any(candidate.overlaps(other) for other in busy):
                continue

            slots.append(Slot(candidate.start, candidate.end))

    return sorted(slots, key=lambda slot: slot.start)


def get_available_slots(
    db: Session,
    agent_id: int,
    location_id: int,
    day: date,
    duration_minutes: int,
    now: datetime | None = None,
) -> AvailabilityResult:
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive.")

    open_periods = resolve_open_periods(db, location_id, agent_id, day)
    if not open_periods.is_open:
        return AvailabilityResult(day, [], open_periods.reason)

    busy = fetch_busy_intervals(db, agent_id, day)
    not_before = now if now is not None and now.date() == day else None

    return AvailabilityResult(day, candidate_slots(open_periods.periods, busy, duration_minutes, not_before))
