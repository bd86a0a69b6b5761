"""Calendar exception model definitions."""

from sqlalchemy import CheckConstraint, Column, Date, ForeignKey, Integer, String, Time
from agenda.database import Base

EXCEPTION_KINDS = ("Holiday", "Vacation", "SpecialEvent", "Maintenance", "Other")


class CalendarException(Base):
    """Blocks a location or an agent for whole days or part of each day in a date range."""
    __tablename__ = "calendar_exceptions"
    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_calendar_exceptions_date_range"),
        CheckConstraint(
            "(location_id IS NULL) <> (agent_id IS NULL)",
            name="ck_calendar_exceptions_single_owner",
        ),
    )

    id = Column(Integer, primary_key=True)
    location_id = Column(Integer, ForeignKey("locations.id"), index=True)
    agent_id = Column(Integer, ForeignKey("agents.id"), index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    # Both set: partial block on each day of the range. Both null: whole day.
    start_time = Column(Time)
    end_time = Column(Time)
    kind = Column(String, default="Other", nullable=False)
    description = Column(String)

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None or self.end_time is None
