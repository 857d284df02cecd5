"""
Capacity ledger: the only code allowed to create or remove attendees.

Every mutation runs under the per-event lock and inside one transaction that
re-reads the event row with ``SELECT ... FOR UPDATE``. The counter moves through
a conditional UPDATE and the ``(event_id, email)`` unique constraint backs the
duplicate check, so the database rejects an over-capacity or duplicate row even
if two writers ever get past the lock together.
"""
import logging

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from event_registry.core.clock import Clock, utcnow
from event_registry.core.config import DEFAULT_PAGE_SIZE
from event_registry.models.attendees import Attendee
from event_registry.models.events import Event
from event_registry.services.errors import (
    CapacityExceededError,
    DuplicateRegistrationError,
    EventNotUpcomingError,
    InternalError,
    NotFoundError,
    ValidationFailedError,
)
from event_registry.services.locks import event_lock
from event_registry.services.pagination import paginate
from event_registry.services.transactions import atomic

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _is_duplicate_email_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "uq_attendees_event_id_email" in message or "attendees.event_id, attendees.email" in message


def _lock_event(db: Session, event_id: int) -> Event:
    event = db.scalar(select(Event).where(Event.id == event_id).with_for_update())
    if event is None:
        raise NotFoundError("Event not found")
    return event


def _require_event(db: Session, event_id: int) -> None:
    if db.scalar(select(Event.id).where(Event.id == event_id)) is None:
        raise NotFoundError("Event not found")


def _find_by_email(db: Session, event_id: int, email: str) -> Attendee | None:
    return db.scalar(
        select(Attendee).where(Attendee.event_id == event_id, Attendee.email == email)
    )


def _matches(query: str):
    # "%" and "_" in the query are literal characters, not wildcards
    term = query.strip().lower()
    return or_(
        func.lower(Attendee.name).contains(term, autoescape=True),
        Attendee.email.contains(term, autoescape=True),
    )


def register_attendee(
    db: Session, *, event_id: int, name: str, email: str, clock: Clock = utcnow
) -> Attendee:
    """
    Register an attendee for an event.

    Checks run in order against the locked event row: the event exists, it has
    not started yet, the email is not already registered, and a seat is free.

    Raises:
        NotFoundError, EventNotUpcomingError, DuplicateRegistrationError,
        CapacityExceededError, ValidationFailedError, InternalError
    """
    name = name.strip()
    email = normalize_email(email)
    if not name or not email:
        raise ValidationFailedError("Attendee name and email are required")

    with event_lock(event_id), atomic(db):
        event = _lock_event(db, event_id)

        if not event.is_upcoming(clock()):
            logger.warning("Registration for event %s rejected: event already started", event_id)
            raise EventNotUpcomingError("Cannot register for past events")

        if _find_by_email(db, event_id, email) is not None:
            logger.warning("Registration for event %s rejected: duplicate email", event_id)
            raise DuplicateRegistrationError("Email is already registered for this event")

        # Check capacity and increment current_attendees atomically
        res = db.execute(
            update(Event)
            .where(Event.id == event_id)
            .where(Event.current_attendees < Event.max_capacity)
            .values(current_attendees=Event.current_attendees + 1)
        )
        if res.rowcount != 1:
            logger.warning("Registration for event %s rejected: event is full", event_id)
            raise CapacityExceededError("Event is at full capacity")

        attendee = Attendee(event_id=event_id, name=name, email=email)
        db.add(attendee)
        try:
            db.flush()
        except IntegrityError as e:
            if _is_duplicate_email_violation(e):
                raise DuplicateRegistrationError("Email is already registered for this event") from e
            raise

    logger.info("Registered attendee %s for event %s", attendee.id, event_id)
    return attendee


def _remove(db: Session, event_id: int, attendee: Attendee) -> None:
    db.delete(attendee)
    db.flush()
    db.execute(
        update(Event)
        .where(Event.id == event_id)
        .where(Event.current_attendees > 0)
        .values(current_attendees=Event.current_attendees - 1)
    )


def unregister_attendee(db: Session, *, event_id: int, attendee_id: int) -> None:
    """
    Remove an attendee from an event and free the seat.

    Raises:
        NotFoundError: If the event or the attendee (within that event) is missing.
    """
    with event_lock(event_id), atomic(db):
        _lock_event(db, event_id)
        attendee = db.scalar(
            select(Attendee).where(Attendee.event_id == event_id, Attendee.id == attendee_id)
        )
        if attendee is None:
            raise NotFoundError("Attendee not found for this event")
        _remove(db, event_id, attendee)

    logger.info("Unregistered attendee %s from event %s", attendee_id, event_id)


def unregister_by_email(db: Session, *, event_id: int, email: str) -> None:
    """Same as unregister_attendee, locating the attendee by email."""
    email = normalize_email(email)
    with event_lock(event_id), atomic(db):
        _lock_event(db, event_id)
        attendee = _find_by_email(db, event_id, email)
        if attendee is None:
            raise NotFoundError("Attendee not found for this event")
        attendee_id = attendee.id
        _remove(db, event_id, attendee)

    logger.info("Unregistered attendee %s from event %s", attendee_id, event_id)


def get_attendee(db: Session, attendee_id: int) -> Attendee:
    attendee = db.get(Attendee, attendee_id)
    if attendee is None:
        raise NotFoundError("Attendee not found")
    return attendee


def list_attendees(
    db: Session,
    *,
    event_id: int,
    page: int = 1,
    per_page: int = DEFAULT_PAGE_SIZE,
    query: str | None = None,
) -> dict:
    """Page through an event's attendees in registration order, optionally filtered by name/email."""
    _require_event(db, event_id)

    stmt = select(Attendee).where(Attendee.event_id == event_id)
    if query:
        stmt = stmt.where(_matches(query))
    stmt = stmt.order_by(Attendee.created_at.asc(), Attendee.id.asc())
    return paginate(db, stmt, page=page, per_page=per_page)


def search_attendees(db: Session, *, event_id: int, query: str) -> list[Attendee]:
    _require_event(db, event_id)
    return list(
        db.scalars(
            select(Attendee)
            .where(Attendee.event_id == event_id)
            .where(_matches(query))
            .order_by(Attendee.created_at.asc(), Attendee.id.asc())
        ).all()
    )


def is_email_registered(db: Session, *, event_id: int, email: str) -> bool:
    return _find_by_email(db, event_id, normalize_email(email)) is not None


def get_attendee_count(db: Session, *, event_id: int) -> int:
    """Count attendee rows directly, independent of the denormalized counter."""
    _require_event(db, event_id)
    count = db.scalar(select(func.count(Attendee.id)).where(Attendee.event_id == event_id))
    return int(count or 0)


def reconcile_attendee_count(db: Session, *, event_id: int) -> dict:
    """
    Recompute current_attendees from the attendee rows and repair any drift.

    Returns the stored and the recounted value.
    """
    with event_lock(event_id), atomic(db):
        event = _lock_event(db, event_id)
        stored = event.current_attendees
        counted = int(
            db.scalar(select(func.count(Attendee.id)).where(Attendee.event_id == event_id)) or 0
        )
        if counted > event.max_capacity:
            logger.error(
                "Event %s has %s attendee rows for capacity %s", event_id, counted, event.max_capacity
            )
            raise InternalError("Attendee rows exceed event capacity")
        if counted != stored:
            logger.warning(
                "Attendee counter drift on event %s: stored=%s counted=%s", event_id, stored, counted
            )
            event.current_attendees = counted

    return {"event_id": event_id, "stored": stored, "counted": counted, "repaired": counted != stored}
