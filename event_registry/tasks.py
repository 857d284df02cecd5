import logging

from sqlalchemy import select

from event_registry.core.celery_config import celery_app
from event_registry.database.db import SessionLocal
from event_registry.models.events import Event
from event_registry.services.errors import RegistryError
from event_registry.services.registrations import reconcile_attendee_count

logger = logging.getLogger(__name__)


@celery_app.task(bind=True)
def reconcile_attendee_counts(self, event_ids: list[int] | None = None) -> dict:
    """
    Recount attendees for the given events (all events by default) and repair
    any counter that drifted from its attendee rows.
    """
    db = SessionLocal()
    try:
        if event_ids is None:
            event_ids = list(db.scalars(select(Event.id).order_by(Event.id)).all())

        repaired, failed = [], []
        for event_id in event_ids:
            try:
                result = reconcile_attendee_count(db, event_id=event_id)
            except RegistryError as e:
                logger.warning("Could not reconcile event %s: %s", event_id, e.message)
                failed.append(event_id)
                continue
            if result["repaired"]:
                repaired.append(event_id)

        return {"checked": len(event_ids), "repaired": repaired, "failed": failed}
    finally:
        db.close()
