from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from event_registry.core.clock import Clock, get_clock
from event_registry.database.db import get_db
from event_registry.schemas.reports import ReconcileOut, ReportOut
from event_registry.services.events import get_overall_report
from event_registry.services.registrations import reconcile_attendee_count

router = APIRouter(prefix="/report", tags=["reports"])


@router.get("", response_model=ReportOut)
def overall_report(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """Aggregate report across all events."""
    return get_overall_report(db, clock=clock)


@router.post("/event/{event_id}/reconcile", response_model=ReconcileOut)
def reconcile_event(event_id: int, db: Session = Depends(get_db)):
    """Recount an event's attendees and repair the stored counter if it drifted."""
    return reconcile_attendee_count(db, event_id=event_id)
