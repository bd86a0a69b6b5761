"""Turns appointment lifecycle events into queued WhatsApp messages and ledger records.

Database sessions are never held across a gateway send: messages are rendered in one
short session, sent through the queue, and each outcome is recorded in its own session.
Session work runs in worker threads so a busy database never stalls the event loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from agenda.models.appointment import Appointment
from agenda.models.notification import NotificationKind, NotificationRecord
from agenda.notifications.delivery_queue import DeliveryQueue
from agenda.notifications.gateway import SendResult
from agenda.notifications.ledger import DeliveryLedger
from agenda.notifications.reminders import REMINDER_KINDS
from agenda.notifications.templates import CLIENT, STAFF, STAFF_KINDS, render
from agenda.notifications.views import LoyaltyProvider, NoLoyalty, PreviousSchedule, build_notification_view

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingMessage:
    appointment_id: int
    location_id: int | None
    kind: str
    audience: str
    phone: str
    text: str
    scheduled_at: datetime | None = None


@dataclass(frozen=True)
class DeliveryOutcome:
    record_id: int
    audience: str
    success: bool


class NotificationDispatcher:
    def __init__(
        self,
        session_factory,
        queue: DeliveryQueue,
        *,
        enabled: bool = True,
        max_attempts: int = 3,
        loyalty_provider: LoyaltyProvider | None = None,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.enabled = enabled
        self.max_attempts = max_attempts
        self.loyalty_provider = loyalty_provider or NoLoyalty()

    def prepare(
        self,
        appointment_id: int,
        kind: NotificationKind | str,
        previous: PreviousSchedule | None = None,
        scheduled_at: datetime | None = None,
    ) -> list[OutgoingMessage]:
        """Render the messages for one event. Blocking; call it from a worker thread."""
        kind = NotificationKind(kind).value
        db = self.session_factory()
        try:
            appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
            if appointment is None:
                logger.warning("Appointment %s not found; skipping %s notification", appointment_id, kind)
                return []

            view = build_notification_view(db, appointment, self.loyalty_provider)

            targets = [(CLIENT, view.client_phone)]
            if kind in STAFF_KINDS:
                targets.append((STAFF, view.agent_phone))

            if kind in REMINDER_KINDS:
                # Overlapping scans may both pick the appointment; only the first one sends.
                ledger = DeliveryLedger(db, self.max_attempts)
                targets = [
                    (audience, phone)
                    for audience, phone in targets
                    if not (phone and ledger.has_sent(appointment_id, kind, phone))
                ]
        finally:
            db.close()

        messages = []
        for audience, phone in targets:
            if not phone:
                logger.info("No %s phone for appointment %s; skipping %s", audience, appointment_id, kind)
                continue
            messages.append(
                OutgoingMessage(
                    appointment_id=appointment_id,
                    location_id=view.location_id,
                    kind=kind,
                    audience=audience,
                    phone=phone,
                    text=render(kind, audience, view, previous),
                    scheduled_at=scheduled_at,
                )
            )
        return messages

    def _record(self, message: OutgoingMessage, result: SendResult) -> NotificationRecord:
        db = self.session_factory()
        try:
            return DeliveryLedger(db, self.max_attempts).record_attempt(
                message.appointment_id,
                message.location_id,
                message.kind,
                message.phone,
                result,
                rendered_message=message.text,
                scheduled_at=message.scheduled_at,
            )
        finally:
            db.close()

    async def deliver(self, messages: list[OutgoingMessage]) -> list[DeliveryOutcome]:
        outcomes = []
        for message in messages:
            result = await self.queue.enqueue(message.phone, message.text)
            record = await asyncio.to_thread(self._record, message, result)
            outcomes.append(DeliveryOutcome(record.id, message.audience, result.success))
        return outcomes

    async def notify_appointment_event(
        self,
        appointment_id: int,
        kind: NotificationKind | str,
        previous: PreviousSchedule | None = None,
        scheduled_at: datetime | None = None,
    ) -> list[DeliveryOutcome]:
        """Send the messages for one lifecycle event. Never raises."""
        if not self.enabled:
            logger.info("Notifications disabled; not sending %s for appointment %s", kind, appointment_id)
            return []

        try:
            messages = await asyncio.to_thread(self.prepare, appointment_id, kind, previous, scheduled_at)
            return await self.deliver(messages)
        except Exception:
            logger.exception("Failed to dispatch %s notification for appointment %s", kind, appointment_id)
            return []

    def _retry_jobs(self, limit: int) -> list[tuple[int, str, str]]:
        db = self.session_factory()
        try:
            ledger = DeliveryLedger(db, self.max_attempts)
            jobs = []
            for record in ledger.retry_candidates(limit):
                if not record.rendered_message:
                    ledger.mark_permanently_failed(record, "No stored message to resend.")
                    continue
                jobs.append((record.id, record.target_phone, record.rendered_message))
            return jobs
        finally:
            db.close()

    def _record_retry(self, record_id: int, result: SendResult) -> None:
        db = self.session_factory()
        try:
            record = db.get(NotificationRecord, record_id)
            DeliveryLedger(db, self.max_attempts).record_retry(record, result)
        finally:
            db.close()

    async def retry_failed(self, limit: int = 50) -> dict[str, int]:
        summary = {"retried": 0, "sent": 0, "failed": 0}
        if not self.enabled:
            return summary

        jobs = await asyncio.to_thread(self._retry_jobs, limit)

        for record_id, phone, text in jobs:
            result = await self.queue.enqueue(phone, text)

            try:
                await asyncio.to_thread(self._record_retry, record_id, result)
            except Exception:
                logger.exception("Failed to record retry of notification %s", record_id)
                continue

            summary["retried"] += 1
            summary["sent" if result.success else "failed"] += 1

        logger.info("Notification retry finished: %s", summary)
        return summary
