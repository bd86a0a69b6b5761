import json
import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from agenda.models.agent import AgentSchedule
from agenda.models.calendar_exception import CalendarException
from agenda.models.location import BusinessHours
from agenda.scheduling.intervals import Interval, intersect, normalize, subtract

logger = logging.getLogger(__name__)

CLOSED_DAY = "ClosedDay"
AGENT_DAY_OFF = "AgentDayOff"


@dataclass(frozen=True)
class OpenPeriods:
    day: date
    periods: list[Interval] = field(default_factory=list)
    reason: str | None = None

    @property
    def is_open(self) -> bool:
        return bool(self.periods)

    def covers(self, interval: Interval) -> bool:
        # A booking may span back-to-back periods.
        return any(period.contains(interval) for period in normalize(self.periods))


def weekday_index(day: date) -> int:
    """Weekday with 0 = Sunday, as stored in the hours tables."""
    return (day.weekday() + 1) % 7


def periods_from_json(day: date, raw) -> list[Interval]:
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring unparseable periods value %r", raw)
            return []

    intervals = []
    for entry in raw or []:
        try:
            intervals.append(Interval.from_hhmm(day, entry["start"], entry["end"]))
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed period %r", entry)
    return normalize(intervals, merge_touching=False)


def _exceptions_on(db: Session, day: date, **owner) -> list[CalendarException]:
    query = db.query(CalendarException).filter(
        CalendarException.start_date <= day,
        CalendarException.end_date >= day,
    )
    for column, value in owner.items():
        query = query.filter(getattr(CalendarException, column) == value)
    return query.all()


def _partial_blocks(day: date, exceptions: list[CalendarException]) -> list[Interval]:
    blocks = []
    for exception in exceptions:
        if exception.is_full_day:
            continue
        try:
            blocks.append(Interval.from_times(day, exception.start_time, exception.end_time))
        except ValueError:
            logger.warning("Skipping calendar exception %s with an empty time range", exception.id)
    return blocks


def resolve_open_periods(db: Session, location_id: int, agent_id: int | None, day: date) -> OpenPeriods:
    weekday = weekday_index(day)

    hours = db.query(BusinessHours).filter(
        BusinessHours.location_id == location_id,
        BusinessHours.weekday == weekday,
    ).first()
    if hours is None or not hours.is_open:
        return OpenPeriods(day, [], CLOSED_DAY)

    periods = periods_from_json(day, hours.periods)
    if not periods:
        return OpenPeriods(day, [], CLOSED_DAY)

    location_exceptions = _exceptions_on(db, day, location_id=location_id)
    if any(exception.is_full_day for exception in location_exceptions):
        return OpenPeriods(day, [], CLOSED_DAY)

    periods = subtract(periods, _partial_blocks(day, location_exceptions))
    if not periods:
        return OpenPeriods(day, [], CLOSED_DAY)

    if agent_id is None:
        return OpenPeriods(day, periods)

    schedule = db.query(AgentSchedule).filter(
        AgentSchedule.agent_id == agent_id,
        AgentSchedule.location_id == location_id,
        AgentSchedule.weekday == weekday,
    ).first()
    # No schedule row: the agent works whenever the location is open.
    if schedule is not None:
        agent_periods = periods_from_json(day, schedule.periods) if schedule.is_active else []
        periods = intersect(periods, agent_periods)
        if not periods:
            return OpenPeriods(day, [], AGENT_DAY_OFF)

    agent_exceptions = _exceptions_on(db, day, agent_id=agent_id)
    if any(exception.is_full_day for exception in agent_exceptions):
        return OpenPeriods(day, [], AGENT_DAY_OFF)

    periods = subtract(periods, _partial_blocks(day, agent_exceptions))
    if not periods:
        return OpenPeriods(day, [], AGENT_DAY_OFF)

    return OpenPeriods(day, periods)
