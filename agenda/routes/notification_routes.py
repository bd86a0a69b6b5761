from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.database import ensure_notification_schema, get_db
from agenda.models.notification import NotificationKind, NotificationStatus
from agenda.notifications.dispatcher import NotificationDispatcher
from agenda.notifications.ledger import DeliveryLedger
from agenda.notifications.reminders import REMINDER_KINDS, run_reminder_scan

router = APIRouter(tags=['notifications'])

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


class NotificationRecordResponse(BaseModel):
    id: int
    appointment_id: int
    location_id: int | None = None
    kind: str
    status: str
    attempts: int
    target_phone: str
    provider_message_id: str | None = None
    error_detail: str | None = None
    scheduled_at: datetime | None = None
    last_attempt_at: datetime | None = None
    sent_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class NotificationPageResponse(BaseModel):
    items: list[NotificationRecordResponse]
    total: int
    page: int
    limit: int


class KindStatsResponse(BaseModel):
    total: int
    sent: int
    failed: int
    pending: int


class ScanSummaryResponse(BaseModel):
    kind: str
    processed: int
    sent: int
    failed: int
    skipped: int


class RetrySummaryResponse(BaseModel):
    retried: int
    sent: int
    failed: int


def get_dispatcher(request: Request) -> NotificationDispatcher | None:
    return getattr(request.app.state, 'dispatcher', None)


def require_dispatcher(dispatcher: NotificationDispatcher | None = Depends(get_dispatcher)) -> NotificationDispatcher:
    if dispatcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Notification dispatcher is not running.',
        )
    return dispatcher


def ensure_database_ready() -> None:
    try:
        ensure_notification_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def normalize_kind(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return NotificationKind(value).value
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Unknown notification kind: {value}.',
        ) from exc


def normalize_status(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return NotificationStatus(value).value
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Unknown notification status: {value}.',
        ) from exc


@router.get('', response_model=NotificationPageResponse)
def list_notifications(
    location_id: int | None = Query(default=None),
    appointment_id: int | None = Query(default=None),
    kind: str | None = Query(default=None),
    notification_status: str | None = Query(default=None, alias='status'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    filters = {
        'location_id': location_id,
        'appointment_id': appointment_id,
        'kind': normalize_kind(kind),
        'status': normalize_status(notification_status),
    }

    ensure_database_ready()

    try:
        records, total = DeliveryLedger(db).history(filters, page=page, limit=limit)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return NotificationPageResponse(
        items=[NotificationRecordResponse.model_validate(record) for record in records],
        total=total,
        page=page,
        limit=limit,
    )


@router.get('/stats', response_model=dict[str, KindStatsResponse])
def notification_stats(
    location_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return DeliveryLedger(db).stats(location_id)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.post('/reminders/{kind}/run', response_model=ScanSummaryResponse)
async def run_reminders(kind: str, dispatcher: NotificationDispatcher = Depends(require_dispatcher)):
    normalized_kind = normalize_kind(kind)
    if normalized_kind not in REMINDER_KINDS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'{kind} is not a reminder kind.',
        )

    try:
        (summary,) = await run_reminder_scan(dispatcher.session_factory, dispatcher, normalized_kind)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return ScanSummaryResponse(
        kind=summary.kind,
        processed=summary.processed,
        sent=summary.sent,
        failed=summary.failed,
        skipped=summary.skipped,
    )


@router.post('/retry', response_model=RetrySummaryResponse)
async def retry_failed_notifications(
    limit: int = Query(default=50, ge=1, le=500),
    dispatcher: NotificationDispatcher = Depends(require_dispatcher),
):
    try:
        summary = await dispatcher.retry_failed(limit)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return RetrySummaryResponse(**summary)


@router.get('/gateway/status')
async def gateway_status(dispatcher: NotificationDispatcher = Depends(require_dispatcher)):
    return await dispatcher.queue.gateway.check_connection()
