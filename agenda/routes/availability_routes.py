from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.database import ensure_appointment_schema, get_db
from agenda.scheduling.availability import get_available_slots

router = APIRouter(tags=['availability'])

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


class SlotResponse(BaseModel):
    start: str
    end: str
    available: bool


class AvailabilityResponse(BaseModel):
    date: date
    agent_id: int
    location_id: int
    duration_minutes: int
    reason: str | None = None
    slots: list[SlotResponse]


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/slots', response_model=AvailabilityResponse)
def list_available_slots(
    agent_id: int = Query(...),
    location_id: int = Query(...),
    day: date = Query(..., alias='date'),
    duration_minutes: int = Query(..., gt=0, le=24 * 60),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = get_available_slots(db, agent_id, location_id, day, duration_minutes, now=datetime.now())
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return AvailabilityResponse(
        date=day,
        agent_id=agent_id,
        location_id=location_id,
        duration_minutes=duration_minutes,
        reason=result.reason,
        slots=[
            SlotResponse(start=slot.start_label, end=slot.end_label, available=slot.available)
            for slot in result.slots
        ],
    )
