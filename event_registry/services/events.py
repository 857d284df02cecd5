"""
Event directory: create, read, update and delete events.

Times arrive in the caller's timezone and are stored in UTC. Capacity edits and
deletes take the same per-event lock as the capacity ledger; plain field edits
do not touch the counter and skip it.
"""
import logging
from contextlib import nullcontext
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from event_registry.core.clock import Clock, utcnow
from event_registry.core.config import DEFAULT_PAGE_SIZE, get_default_timezone
from event_registry.core.timezones import is_valid_timezone, to_utc
from event_registry.models.attendees import Attendee
from event_registry.models.events import Event
from event_registry.services.errors import NotFoundError, ValidationFailedError
from event_registry.services.locks import event_lock
from event_registry.services.pagination import paginate
from event_registry.services.transactions import atomic

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "location", "start_time", "end_time", "max_capacity", "timezone")


def _require_text(field: str, value: str | None) -> str:
    if value is None or not value.strip():
        raise ValidationFailedError(f"{field} must not be empty")
    return value.strip()


def _require_timezone(tz_name: str | None) -> str:
    if not tz_name or not is_valid_timezone(tz_name):
        raise ValidationFailedError(f"Unknown timezone: {tz_name!r}")
    return tz_name


def _require_capacity(value: int | None) -> int:
    if value is None or value < 1:
        raise ValidationFailedError("max_capacity must be a positive integer")
    return value


def _require_window(start_time: datetime, end_time: datetime) -> None:
    if end_time <= start_time:
        raise ValidationFailedError("end_time must be after start_time")


def _require_future(start_time: datetime, now: datetime) -> None:
    if start_time <= now:
        raise ValidationFailedError("start_time must be in the future")


def create_event(
    db: Session,
    *,
    name: str,
    location: str,
    start_time: datetime,
    end_time: datetime,
    max_capacity: int,
    timezone: str | None = None,
    clock: Clock = utcnow,
) -> Event:
    """
    Create an event. Naive start/end times are read in ``timezone``.

    Raises:
        ValidationFailedError: On empty fields, a non-positive capacity, an
            unknown timezone, a start time not in the future or an empty window.
    """
    tz_name = _require_timezone(timezone or get_default_timezone())
    name = _require_text("name", name)
    location = _require_text("location", location)
    max_capacity = _require_capacity(max_capacity)

    start_utc = to_utc(start_time, tz_name)
    end_utc = to_utc(end_time, tz_name)
    _require_future(start_utc, clock())
    _require_window(start_utc, end_utc)

    event = Event(
        name=name,
        location=location,
        start_time=start_utc,
        end_time=end_utc,
        max_capacity=max_capacity,
        current_attendees=0,
        timezone=tz_name,
    )
    with atomic(db):
        db.add(event)
        db.flush()

    logger.info("Created event %s (%s) with capacity %s", event.id, name, max_capacity)
    return event


def get_event(db: Session, event_id: int) -> Event:
    event = db.get(Event, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    return event


def list_events(
    db: Session,
    *,
    page: int = 1,
    per_page: int = DEFAULT_PAGE_SIZE,
    include_past: bool = False,
    location: str | None = None,
    starts_after: datetime | None = None,
    starts_before: datetime | None = None,
    clock: Clock = utcnow,
) -> dict:
    """Page through events by start time. Only upcoming events unless include_past is set."""
    stmt = select(Event)
    if not include_past:
        stmt = stmt.where(Event.start_time > clock())
    if location:
        stmt = stmt.where(func.lower(Event.location).contains(location.strip().lower(), autoescape=True))
    if starts_after is not None:
        stmt = stmt.where(Event.start_time >= to_utc(starts_after, "UTC"))
    if starts_before is not None:
        stmt = stmt.where(Event.start_time <= to_utc(starts_before, "UTC"))
    stmt = stmt.order_by(Event.start_time.asc(), Event.id.asc())
    return paginate(db, stmt, page=page, per_page=per_page)


def update_event(db: Session, event_id: int, changes: dict, *, clock: Clock = utcnow) -> Event:
    """
    Apply a partial update. Only keys present in ``changes`` are touched.

    Naive times are read in the new timezone if one is given, else the event's.
    Changing only the timezone leaves the stored instants alone.

    Raises:
        NotFoundError: If the event does not exist.
        ValidationFailedError: If a touched field breaks the creation rules, or
            max_capacity would drop below current_attendees.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationFailedError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    capacity_change = "max_capacity" in changes
    lock = event_lock(event_id) if capacity_change else nullcontext()

    with lock, atomic(db):
        event = db.scalar(select(Event).where(Event.id == event_id).with_for_update())
        if event is None:
            raise NotFoundError("Event not found")

        now = clock()
        tz_name = event.timezone
        if "timezone" in changes:
            tz_name = _require_timezone(changes["timezone"])

        values = {}
        if "name" in changes:
            values["name"] = _require_text("name", changes["name"])
        if "location" in changes:
            values["location"] = _require_text("location", changes["location"])
        if "timezone" in changes:
            values["timezone"] = tz_name

        start_utc, end_utc = event.start_time, event.end_time
        if "start_time" in changes:
            if changes["start_time"] is None:
                raise ValidationFailedError("start_time must not be empty")
            start_utc = to_utc(changes["start_time"], tz_name)
            _require_future(start_utc, now)
            values["start_time"] = start_utc
        if "end_time" in changes:
            if changes["end_time"] is None:
                raise ValidationFailedError("end_time must not be empty")
            end_utc = to_utc(changes["end_time"], tz_name)
            values["end_time"] = end_utc
        _require_window(start_utc, end_utc)

        if capacity_change:
            new_capacity = _require_capacity(changes["max_capacity"])
            res = db.execute(
                update(Event)
                .where(Event.id == event_id)
                .where(Event.current_attendees <= new_capacity)
                .values(max_capacity=new_capacity)
            )
            if res.rowcount != 1:
                raise ValidationFailedError(
                    f"max_capacity cannot be lower than current attendees ({event.current_attendees})"
                )

        for field, value in values.items():
            setattr(event, field, value)

    logger.info("Updated event %s: %s", event_id, ", ".join(sorted(changes)) or "no changes")
    return event


def delete_event(db: Session, event_id: int) -> None:
    """
    Delete an event together with all of its attendees.

    Raises:
        NotFoundError: If the event does not exist.
    """
    with event_lock(event_id), atomic(db):
        event = db.scalar(select(Event).where(Event.id == event_id).with_for_update())
        if event is None:
            raise NotFoundError("Event not found")
        attendee_count = event.current_attendees
        db.delete(event)

    logger.info("Deleted event %s and %s attendee(s)", event_id, attendee_count)


def get_event_stats(db: Session, event_id: int, *, clock: Clock = utcnow) -> dict:
    event = get_event(db, event_id)
    return {
        "event_id": event.id,
        "total_capacity": event.max_capacity,
        "current_attendees": event.current_attendees,
        "remaining_capacity": event.remaining_capacity,
        "capacity_percentage": round(event.current_attendees / event.max_capacity * 100, 2),
        "is_full": not event.has_available_capacity(),
        "is_upcoming": event.is_upcoming(clock()),
    }


def get_overall_report(db: Session, *, clock: Clock = utcnow) -> dict:
    """Return aggregated totals across all events."""
    total_capacity = db.scalar(select(func.sum(Event.max_capacity)))
    total_attendees = db.scalar(select(func.sum(Event.current_attendees)))
    total_events = db.scalar(select(func.count(Event.id)))
    upcoming_events = db.scalar(select(func.count(Event.id)).where(Event.start_time > clock()))
    registered_rows = db.scalar(select(func.count(Attendee.id)))

    return {
        "total_events": int(total_events or 0),
        "upcoming_events": int(upcoming_events or 0),
        "total_capacity": int(total_capacity or 0),
        "total_attendees": int(total_attendees or 0),
        "registered_rows": int(registered_rows or 0),
    }
