from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from event_registry.core.clock import Clock, get_clock
from event_registry.core.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from event_registry.database.db import get_db
from event_registry.schemas.events import EventCreate, EventOut, EventPage, EventStatsOut, EventUpdate
from event_registry.services import events as event_service

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", response_model=EventOut, status_code=status.HTTP_201_CREATED)
def create_event(payload: EventCreate, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    return event_service.create_event(db, **payload.model_dump(), clock=clock)


@router.get("", response_model=EventPage)
def list_events(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    include_past: bool = False,
    location: str | None = None,
    starts_after: datetime | None = None,
    starts_before: datetime | None = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return event_service.list_events(
        db,
        page=page,
        per_page=per_page,
        include_past=include_past,
        location=location,
        starts_after=starts_after,
        starts_before=starts_before,
        clock=clock,
    )


@router.get("/{event_id}", response_model=EventOut)
def get_event(event_id: int, db: Session = Depends(get_db)):
    return event_service.get_event(db, event_id)


@router.patch("/{event_id}", response_model=EventOut)
def update_event(
    event_id: int,
    payload: EventUpdate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return event_service.update_event(db, event_id, payload.model_dump(exclude_unset=True), clock=clock)


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_event(event_id: int, db: Session = Depends(get_db)):
    event_service.delete_event(db, event_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{event_id}/stats", response_model=EventStatsOut)
def event_stats(event_id: int, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    return event_service.get_event_stats(db, event_id, clock=clock)
