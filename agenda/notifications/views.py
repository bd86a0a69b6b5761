from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal

from sqlalchemy.orm import Session

from agenda.models.appointment import Appointment
from agenda.scheduling.intervals import Interval


@dataclass(frozen=True)
class ServiceLine:
    name: str
    price: Decimal
    duration_minutes: int


@dataclass(frozen=True)
class LoyaltySummary:
    balance: int
    earned_this_booking: int = 0
    eligible_to_redeem: bool = False


@dataclass(frozen=True)
class PreviousSchedule:
    day: date
    start_time: time
    end_time: time

    @classmethod
    def from_interval(cls, interval: Interval) -> "PreviousSchedule":
        return cls(interval.day, interval.start_time, interval.end_time)


@dataclass(frozen=True)
class AppointmentNotificationView:
    """Everything the message templates need, read once per appointment."""

    appointment_id: int
    location_id: int
    agent_id: int
    client_name: str
    client_phone: str | None
    agent_name: str
    agent_phone: str | None
    location_name: str
    location_address: str | None
    location_phone: str | None
    day: date
    start_time: time
    end_time: time
    services: tuple[ServiceLine, ...] = field(default_factory=tuple)
    total_value: Decimal = Decimal("0")
    notes: str | None = None
    loyalty: LoyaltySummary | None = None


class LoyaltyProvider:
    """Read-only source of a client's points balance for message rendering."""

    def summary(self, db: Session, appointment: Appointment) -> LoyaltySummary | None:
        raise NotImplementedError


class NoLoyalty(LoyaltyProvider):
    def summary(self, db: Session, appointment: Appointment) -> LoyaltySummary | None:
        return None


def build_notification_view(
    db: Session,
    appointment: Appointment,
    loyalty_provider: LoyaltyProvider | None = None,
) -> AppointmentNotificationView:
    client = appointment.client
    agent = appointment.agent
    location = appointment.location

    services = tuple(
        ServiceLine(
            name=link.service.name if link.service else f"Service {link.service_id}",
            price=Decimal(link.applied_price if link.applied_price is not None else 0),
            duration_minutes=link.service.duration_minutes if link.service else 0,
        )
        for link in appointment.service_links
    )

    loyalty = (loyalty_provider or NoLoyalty()).summary(db, appointment)

    return AppointmentNotificationView(
        appointment_id=appointment.id,
        location_id=appointment.location_id,
        agent_id=appointment.agent_id,
        client_name=client.display_name if client else "",
        client_phone=client.phone if client else None,
        agent_name=agent.display_name if agent else "",
        agent_phone=agent.phone if agent else None,
        location_name=location.name if location else "",
        location_address=location.address if location else None,
        location_phone=location.phone if location else None,
        day=appointment.appointment_date,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        services=services,
        total_value=Decimal(appointment.total_value or 0),
        notes=appointment.notes,
        loyalty=loyalty,
    )
