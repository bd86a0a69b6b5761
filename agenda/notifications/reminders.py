import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta

from sqlalchemy import and_, exists
from sqlalchemy.orm import Session

from agenda.core import config
from agenda.models.appointment import Appointment, AppointmentStatus
from agenda.models.notification import NotificationKind, NotificationRecord, NotificationStatus

logger = logging.getLogger(__name__)

REMINDER_KINDS = (NotificationKind.REMINDER_24H.value, NotificationKind.REMINDER_2H.value)


@dataclass(frozen=True)
class ReminderWindow:
    """Send when the appointment starts between ``lead_min`` and ``lead_max`` from now."""

    kind: str
    lead_min: timedelta
    lead_max: timedelta


@dataclass
class ScanSummary:
    kind: str
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


def default_windows() -> dict[str, ReminderWindow]:
    return {
        NotificationKind.REMINDER_24H.value: ReminderWindow(
            NotificationKind.REMINDER_24H.value,
            timedelta(minutes=config.REMINDER_24H_LEAD_MIN_MINUTES),
            timedelta(minutes=config.REMINDER_24H_LEAD_MAX_MINUTES),
        ),
        NotificationKind.REMINDER_2H.value: ReminderWindow(
            NotificationKind.REMINDER_2H.value,
            timedelta(minutes=config.REMINDER_2H_LEAD_MIN_MINUTES),
            timedelta(minutes=config.REMINDER_2H_LEAD_MAX_MINUTES),
        ),
    }


def default_allowed_hours() -> tuple[int, int]:
    return config.REMINDER_ALLOWED_START_HOUR, config.REMINDER_ALLOWED_END_HOUR


def within_allowed_hours(now: datetime, allowed_hours: tuple[int, int] | None) -> bool:
    if allowed_hours is None:
        return True
    start_hour, end_hour = allowed_hours
    return start_hour <= now.hour < end_hour


def appointment_start(appointment: Appointment) -> datetime:
    return datetime.combine(appointment.appointment_date, appointment.start_time or time())


def find_due_appointments(db: Session, window: ReminderWindow, now: datetime) -> list[tuple[int, datetime]]:
    earliest = now + window.lead_min
    latest = now + window.lead_max

    already_sent = exists().where(
        and_(
            NotificationRecord.appointment_id == Appointment.id,
            NotificationRecord.kind == window.kind,
            NotificationRecord.status == NotificationStatus.SENT.value,
        )
    )
    # Date-level prefilter; the window can span midnight so times are compared in Python.
    candidates = db.query(Appointment).filter(
        Appointment.status == AppointmentStatus.CONFIRMED.value,
        Appointment.appointment_date >= earliest.date(),
        Appointment.appointment_date <= latest.date(),
        ~already_sent,
    ).order_by(Appointment.appointment_date.asc(), Appointment.start_time.asc()).all()

    due = []
    for appointment in candidates:
        starts_at = appointment_start(appointment)
        if earliest <= starts_at <= latest:
            due.append((appointment.id, starts_at))
    return due


class ReminderScanner:
    def __init__(
        self,
        session_factory,
        dispatcher,
        windows: dict[str, ReminderWindow] | None = None,
        allowed_hours: tuple[int, int] | None = None,
        clock=datetime.now,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.windows = windows if windows is not None else default_windows()
        self.allowed_hours = allowed_hours
        self._clock = clock

    def _find_due(self, window: ReminderWindow, now: datetime) -> list[tuple[int, datetime]]:
        db = self.session_factory()
        try:
            return find_due_appointments(db, window, now)
        finally:
            db.close()

    async def run(self, kind: NotificationKind | str, now: datetime | None = None) -> ScanSummary:
        kind = NotificationKind(kind).value
        if kind not in self.windows:
            raise ValueError(f"{kind} is not a reminder kind.")

        now = now or self._clock()
        summary = ScanSummary(kind)

        if not within_allowed_hours(now, self.allowed_hours):
            logger.info("Skipping %s scan at %s: outside allowed sending hours", kind, now)
            summary.skipped = 1
            return summary

        window = self.windows[kind]
        due = await asyncio.to_thread(self._find_due, window, now)

        for appointment_id, starts_at in due:
            summary.processed += 1
            outcomes = await self.dispatcher.notify_appointment_event(
                appointment_id,
                kind,
                scheduled_at=starts_at - window.lead_min,
            )
            if not outcomes:
                summary.skipped += 1
            elif all(outcome.success for outcome in outcomes):
                summary.sent += 1
            else:
                summary.failed += 1

        logger.info(
            "%s scan: processed=%s sent=%s failed=%s skipped=%s",
            kind,
            summary.processed,
            summary.sent,
            summary.failed,
            summary.skipped,
        )
        return summary


async def run_reminder_scan(
    session_factory,
    dispatcher,
    kind: NotificationKind | str | None = None,
    now: datetime | None = None,
    allowed_hours: tuple[int, int] | None = None,
) -> list[ScanSummary]:
    scanner = ReminderScanner(
        session_factory,
        dispatcher,
        allowed_hours=allowed_hours if allowed_hours is not None else default_allowed_hours(),
    )
    kinds = [NotificationKind(kind).value] if kind is not None else list(REMINDER_KINDS)
    return [await scanner.run(reminder_kind, now) for reminder_kind in kinds]
