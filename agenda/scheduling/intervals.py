"""Half-open ``[start, end)`` time intervals on a calendar date, in minutes of day."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

MINUTES_PER_DAY = 24 * 60


def parse_hhmm(value: str) -> int:
    """Convert ``"HH:MM"`` (seconds are ignored) into minutes since midnight."""
    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM.")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 24 and 0 <= minutes < 60) or hours * 60 + minutes > MINUTES_PER_DAY:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM.")
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def time_to_minutes(value: time) -> int:
    # time.max stands in for 24:00, which datetime.time cannot hold.
    if value == time.max:
        return MINUTES_PER_DAY
    return value.hour * 60 + value.minute


def minutes_to_time(minutes: int) -> time:
    if minutes == MINUTES_PER_DAY:
        return time.max
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"{minutes} is not a minute of the day.")
    return time(minutes // 60, minutes % 60)


@dataclass(frozen=True, order=True)
class Interval:
    day: date
    start: int
    end: int

    def __post_init__(self) -> None:
        if not 0 <= self.start < self.end <= MINUTES_PER_DAY:
            raise ValueError(
                f"Invalid interval {self.start}-{self.end}: "
                f"expected 0 <= start < end <= {MINUTES_PER_DAY}."
            )

    @classmethod
    def from_times(cls, day: date, start: time, end: time) -> "Interval":
        return cls(day, time_to_minutes(start), time_to_minutes(end))

    @classmethod
    def from_hhmm(cls, day: date, start: str, end: str) -> "Interval":
        return cls(day, parse_hhmm(start), parse_hhmm(end))

    def overlaps(self, other: "Interval") -> bool:
        # Touching endpoints do not conflict.
        return self.day == other.day and self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.day == other.day and self.start <= other.start and other.end <= self.end

    def duration_minutes(self) -> int:
        return self.end - self.start

    @property
    def start_time(self) -> time:
        return minutes_to_time(self.start)

    @property
    def end_time(self) -> time:
        return minutes_to_time(self.end)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.day, time()) + timedelta(minutes=self.start)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.day, time()) + timedelta(minutes=self.end)

    def label(self) -> str:
        return f"{format_minutes(self.start)}-{format_minutes(self.end)}"


def normalize(intervals: Iterable[Interval], merge_touching: bool = True) -> list[Interval]:
    """Sort and merge overlapping intervals of the same day.

    With ``merge_touching=False`` back-to-back intervals stay separate, which keeps
    configured sub-periods (and their slot grids) intact.
    """
    merged: list[Interval] = []
    for interval in sorted(intervals):
        if (
            merged
            and merged[-1].day == interval.day
            and (interval.start < merged[-1].end or (merge_touching and interval.start == merged[-1].end))
        ):
            last = merged[-1]
            merged[-1] = Interval(last.day, last.start, max(last.end, interval.end))
        else:
            merged.append(interval)
    return merged


def intersect(left: Iterable[Interval], right: Iterable[Interval]) -> list[Interval]:
    right = list(right)
    result = []
    for a in left:
        for b in right:
            if a.day != b.day:
                continue
            start, end = max(a.start, b.start), min(a.end, b.end)
            if start < end:
                result.append(Interval(a.day, start, end))
    return normalize(result, merge_touching=False)


def subtract(periods: Iterable[Interval], blocked: Iterable[Interval]) -> list[Interval]:
    remaining = normalize(periods, merge_touching=False)
    for block in normalize(blocked):
        pieces = []
        for period in remaining:
            if not period.overlaps(block):
                pieces.append(period)
                continue
            if period.start < block.start:
                pieces.append(Interval(period.day, period.start, block.start))
            if block.end < period.end:
                pieces.append(Interval(period.day, block.end, period.end))
        remaining = pieces
    return remaining
