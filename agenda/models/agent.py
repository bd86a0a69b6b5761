"""Agent (staff member) model definitions."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, String, UniqueConstraint
from agenda.database import Base


class Agent(Base):
    """Represents a bookable staff member."""
    __tablename__ = "agents"

    id = Column(Integer, primary_key=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String)
    phone = Column(String)
    is_active = Column(Boolean, default=True)

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class AgentSchedule(Base):
    """Working periods of an agent at one location for one weekday (0 = Sunday)."""
    __tablename__ = "agent_schedules"
    __table_args__ = (
        UniqueConstraint("agent_id", "location_id", "weekday", name="uq_agent_schedule_agent_location_weekday"),
    )

    id = Column(Integer, primary_key=True)
    agent_id = Column(Integer, ForeignKey("agents.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    weekday = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    periods = Column(JSON, default=list)
