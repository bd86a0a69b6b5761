"""Location and business-hours model definitions."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, String, UniqueConstraint
from agenda.database import Base


class Location(Base):
    """Represents a business unit with its own hours and staff roster."""
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    address = Column(String)
    phone = Column(String)
    is_active = Column(Boolean, default=True)


class BusinessHours(Base):
    """Open periods of a location for one weekday (0 = Sunday)."""
    __tablename__ = "location_business_hours"
    __table_args__ = (UniqueConstraint("location_id", "weekday", name="uq_business_hours_location_weekday"),)

    id = Column(Integer, primary_key=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)
    is_open = Column(Boolean, default=False, nullable=False)
    periods = Column(JSON, default=list)  # [{"start": "HH:MM", "end": "HH:MM"}, ...]
