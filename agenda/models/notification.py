"""Notification delivery ledger model definitions."""

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from agenda.database import Base


class NotificationKind(str, enum.Enum):
    CONFIRMATION = "Confirmation"
    CANCELLATION = "Cancellation"
    RESCHEDULE = "Reschedule"
    REMINDER_24H = "Reminder24h"
    REMINDER_2H = "Reminder2h"


class NotificationStatus(str, enum.Enum):
    PENDING = "Pending"
    SENT = "Sent"
    FAILED = "Failed"
    PERMANENTLY_FAILED = "PermanentlyFailed"


class NotificationRecord(Base):
    """One notification send, updated in place on every attempt."""
    __tablename__ = "notification_records"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"))
    kind = Column(String, nullable=False)
    status = Column(String, nullable=False, default=NotificationStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    target_phone = Column(String, nullable=False)
    rendered_message = Column(Text)
    provider_message_id = Column(String)
    error_detail = Column(Text)
    scheduled_at = Column(DateTime)
    last_attempt_at = Column(DateTime)
    sent_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
