import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.models.notification import NotificationKind, NotificationRecord, NotificationStatus
from agenda.notifications.gateway import SendResult

logger = logging.getLogger(__name__)

HISTORY_FILTERS = ("location_id", "appointment_id", "kind", "status")
FAILED_STATUSES = (NotificationStatus.FAILED.value, NotificationStatus.PERMANENTLY_FAILED.value)


class DeliveryLedger:
    """Durable record of notification sends. The only writer of notification_records."""

    def __init__(self, db: Session, max_attempts: int = 3, clock=datetime.now):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        self.db = db
        self.max_attempts = max_attempts
        self._clock = clock

    def _commit(self, record: NotificationRecord) -> NotificationRecord:
        try:
            self.db.commit()
            self.db.refresh(record)
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return record

    def _apply(self, record: NotificationRecord, result: SendResult) -> None:
        now = self._clock()
        record.attempts = (record.attempts or 0) + 1
        record.last_attempt_at = now

        if result.success:
            record.status = NotificationStatus.SENT.value
            record.provider_message_id = result.provider_message_id
            record.sent_at = now
            record.error_detail = None
        else:
            record.status = NotificationStatus.FAILED.value
            record.error_detail = result.error or "unknown error"

    def record_attempt(
        self,
        appointment_id: int,
        location_id: int | None,
        kind: NotificationKind | str,
        target_phone: str,
        result: SendResult,
        rendered_message: str | None = None,
        scheduled_at: datetime | None = None,
    ) -> NotificationRecord:
        record = NotificationRecord(
            appointment_id=appointment_id,
            location_id=location_id,
            kind=NotificationKind(kind).value,
            target_phone=target_phone,
            rendered_message=rendered_message,
            scheduled_at=scheduled_at,
            attempts=0,
        )
        self._apply(record, result)
        self.db.add(record)
        self._commit(record)

        logger.info(
            "Notification %s %s for appointment %s to %s: %s",
            record.id,
            record.kind,
            appointment_id,
            target_phone,
            record.status,
        )
        return record

    def record_retry(self, record: NotificationRecord, result: SendResult) -> NotificationRecord:
        self._apply(record, result)
        if not result.success and record.attempts >= self.max_attempts:
            record.status = NotificationStatus.PERMANENTLY_FAILED.value
            logger.warning(
                "Notification %s gave up after %s attempts: %s",
                record.id,
                record.attempts,
                record.error_detail,
            )
        return self._commit(record)

    def mark_permanently_failed(self, record: NotificationRecord, reason: str | None = None) -> NotificationRecord:
        record.status = NotificationStatus.PERMANENTLY_FAILED.value
        if reason:
            record.error_detail = reason
        return self._commit(record)

    def has_sent(self, appointment_id: int, kind: NotificationKind | str, target_phone: str | None = None) -> bool:
        query = self.db.query(NotificationRecord.id).filter(
            NotificationRecord.appointment_id == appointment_id,
            NotificationRecord.kind == NotificationKind(kind).value,
            NotificationRecord.status == NotificationStatus.SENT.value,
        )
        if target_phone is not None:
            query = query.filter(NotificationRecord.target_phone == target_phone)
        return query.first() is not None

    def retry_candidates(self, limit: int = 50) -> list[NotificationRecord]:
        return self.db.query(NotificationRecord).filter(
            NotificationRecord.status == NotificationStatus.FAILED.value,
            NotificationRecord.attempts < self.max_attempts,
        ).order_by(NotificationRecord.id.asc()).limit(limit).all()

    def history(self, filters: dict | None = None, page: int = 1, limit: int = 20) -> tuple[list[NotificationRecord], int]:
        query = self.db.query(NotificationRecord)
        for name, value in (filters or {}).items():
            if name not in HISTORY_FILTERS:
                raise ValueError(f"Unsupported notification filter: {name}")
            if value is not None:
                query = query.filter(getattr(NotificationRecord, name) == value)

        total = query.count()
        page = max(page, 1)
        records = query.order_by(
            NotificationRecord.created_at.desc(),
            NotificationRecord.id.desc(),
        ).offset((page - 1) * limit).limit(limit).all()
        return records, total

    def stats(self, location_id: int | None = None) -> dict[str, dict[str, int]]:
        query = self.db.query(
            NotificationRecord.kind,
            NotificationRecord.status,
            func.count(NotificationRecord.id),
        )
        if location_id is not None:
            query = query.filter(NotificationRecord.location_id == location_id)

        stats = {kind.value: {"total": 0, "sent": 0, "failed": 0, "pending": 0} for kind in NotificationKind}
        for kind, status, count in query.group_by(NotificationRecord.kind, NotificationRecord.status).all():
            bucket = stats.setdefault(kind, {"total": 0, "sent": 0, "failed": 0, "pending": 0})
            bucket["total"] += count
            if status == NotificationStatus.SENT.value:
                bucket["sent"] += count
            elif status in FAILED_STATUSES:
                bucket["failed"] += count
            else:
                bucket["pending"] += count
        return stats
