"""Appointment model definitions."""

import enum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Time
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from agenda.database import Base
from agenda.models.agent import Agent
from agenda.models.client import Client
from agenda.models.location import Location
from agenda.models.service import Service
from agenda.scheduling.intervals import Interval


class AppointmentStatus(str, enum.Enum):
    APPROVED = "Approved"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"


ACTIVE_STATUSES = (AppointmentStatus.APPROVED.value, AppointmentStatus.CONFIRMED.value)


class Appointment(Base):
    """Represents a booked interval of one agent at one location."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    agent_id = Column(Integer, ForeignKey("agents.id"), nullable=False)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    appointment_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.APPROVED.value)
    total_value = Column(Numeric(10, 2), default=0)
    notes = Column(String)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    service_links = relationship(
        "AppointmentServiceLink",
        order_by="AppointmentServiceLink.position",
        cascade="all, delete-orphan",
        back_populates="appointment",
    )
    location = relationship(Location)
    agent = relationship(Agent)
    client = relationship(Client)

    @property
    def service_ids(self) -> list[int]:
        return [link.service_id for link in self.service_links]

    @property
    def interval(self) -> Interval:
        return Interval.from_times(self.appointment_date, self.start_time, self.end_time)

    @property
    def is_active(self) -> bool:
        return self.status != AppointmentStatus.CANCELLED.value


class AppointmentServiceLink(Base):
    """One service of an appointment, in booking order, with the price applied."""
    __tablename__ = "appointment_services"

    appointment_id = Column(Integer, ForeignKey("appointments.id"), primary_key=True)
    position = Column(Integer, primary_key=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    applied_price = Column(Numeric(10, 2), default=0)

    appointment = relationship("Appointment", back_populates="service_links")
    service = relationship(Service)
