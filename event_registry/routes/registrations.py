from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import EmailStr
from sqlalchemy.orm import Session

from event_registry.core.clock import Clock, get_clock
from event_registry.core.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from event_registry.database.db import get_db
from event_registry.schemas.attendees import (
    AttendeeCountOut,
    AttendeeOut,
    AttendeePage,
    RegisterRequest,
    RegistrationCheckOut,
)
from event_registry.services import registrations as ledger

router = APIRouter(prefix="/events/{event_id}", tags=["registrations"])


@router.post("/register", response_model=AttendeeOut, status_code=status.HTTP_201_CREATED)
def register(
    event_id: int,
    payload: RegisterRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return ledger.register_attendee(
        db, event_id=event_id, name=payload.name, email=payload.email, clock=clock
    )


@router.get("/attendees", response_model=AttendeePage)
def list_attendees(
    event_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    q: str | None = None,
    db: Session = Depends(get_db),
):
    return ledger.list_attendees(db, event_id=event_id, page=page, per_page=per_page, query=q)


@router.get("/attendees/count", response_model=AttendeeCountOut)
def attendee_count(event_id: int, db: Session = Depends(get_db)):
    return {"event_id": event_id, "count": ledger.get_attendee_count(db, event_id=event_id)}


@router.get("/attendees/check", response_model=RegistrationCheckOut)
def check_registration(event_id: int, email: EmailStr, db: Session = Depends(get_db)):
    registered = ledger.is_email_registered(db, event_id=event_id, email=email)
    return {"event_id": event_id, "email": ledger.normalize_email(email), "is_registered": registered}


@router.delete("/attendees/{attendee_id}", status_code=status.HTTP_204_NO_CONTENT)
def unregister(event_id: int, attendee_id: int, db: Session = Depends(get_db)):
    ledger.unregister_attendee(db, event_id=event_id, attendee_id=attendee_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
