"""Service catalog model definitions."""

from sqlalchemy import Boolean, Column, Integer, Numeric, String
from agenda.database import Base


class Service(Base):
    """Represents a bookable service with its price and duration."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), default=0)
    duration_minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True)
