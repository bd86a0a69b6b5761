"""Client model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String
from agenda.database import Base


class Client(Base):
    """Represents a customer of a location."""
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True)
    location_id = Column(Integer, ForeignKey("locations.id"))
    first_name = Column(String, nullable=False)
    last_name = Column(String)
    phone = Column(String, index=True)

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()
