"""
Test the capacity ledger (register / unregister and attendee queries).
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from event_registry.core.clock import utcnow
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
from event_registry.services.events import delete_event
from event_registry.services.registrations import (
    get_attendee,
    get_attendee_count,
    is_email_registered,
    list_attendees,
    reconcile_attendee_count,
    register_attendee,
    search_attendees,
    unregister_attendee,
    unregister_by_email,
)


def attendee_rows(db: Session, event_id: int) -> int:
    return db.scalar(select(func.count(Attendee.id)).where(Attendee.event_id == event_id))


class TestRegister:
    """Test register_attendee."""

    def test_register_success(self, db_session: Session, make_event):
        """Test registering an attendee successfully."""
        event = make_event(max_capacity=10)

        attendee = register_attendee(db_session, event_id=event.id, name="Ann", email="ann@example.com")

        assert attendee.id is not None
        assert attendee.event_id == event.id
        assert attendee.email == "ann@example.com"

        db_session.refresh(event)
        assert event.current_attendees == 1
        assert attendee_rows(db_session, event.id) == 1

    def test_email_is_normalized(self, db_session: Session, make_event):
        event = make_event()

        attendee = register_attendee(db_session, event_id=event.id, name=" Ann ", email=" Ann@Example.COM ")

        assert attendee.name == "Ann"
        assert attendee.email == "ann@example.com"

    def test_capacity_one_rejects_second(self, db_session: Session, make_event):
        """Scenario A: a one-seat event takes one registration and refuses the next."""
        event = make_event(max_capacity=1)

        register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")
        db_session.refresh(event)
        assert event.current_attendees == 1

        with pytest.raises(CapacityExceededError, match="full capacity"):
            register_attendee(db_session, event_id=event.id, name="B", email="b@x.com")

        db_session.refresh(event)
        assert event.current_attendees == 1
        assert attendee_rows(db_session, event.id) == 1

    def test_duplicate_email_same_event(self, db_session: Session, make_event):
        """Scenario B: one email per event, but free to register for another event."""
        event = make_event(name="E")
        other = make_event(name="E2")

        register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")

        with pytest.raises(DuplicateRegistrationError):
            register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")

        attendee = register_attendee(db_session, event_id=other.id, name="A", email="a@x.com")
        assert attendee.event_id == other.id

    def test_duplicate_email_is_case_insensitive(self, db_session: Session, make_event):
        event = make_event()

        register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")

        with pytest.raises(DuplicateRegistrationError):
            register_attendee(db_session, event_id=event.id, name="A", email="A@X.com")

    def test_duplicate_checked_before_capacity(self, db_session: Session, make_event):
        """A full event still reports a repeated email as a duplicate."""
        event = make_event(max_capacity=1)
        register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")

        with pytest.raises(DuplicateRegistrationError):
            register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")

    def test_past_event_rejected(self, db_session: Session, make_event):
        """Scenario C: an event that started an hour ago accepts no registrations."""
        start = utcnow() - timedelta(hours=1)
        event = make_event(start_time=start, end_time=start + timedelta(hours=3))

        with pytest.raises(EventNotUpcomingError):
            register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")

        db_session.refresh(event)
        assert event.current_attendees == 0
        assert attendee_rows(db_session, event.id) == 0

    def test_injected_clock_decides_upcoming(self, db_session: Session, make_event):
        event = make_event()
        after_start = event.start_time + timedelta(seconds=1)

        with pytest.raises(EventNotUpcomingError):
            register_attendee(
                db_session, event_id=event.id, name="A", email="a@x.com", clock=lambda: after_start
            )

        # exactly at start_time is not "strictly in the future"
        with pytest.raises(EventNotUpcomingError):
            register_attendee(
                db_session, event_id=event.id, name="A", email="a@x.com", clock=lambda: event.start_time
            )

    def test_missing_event(self, db_session: Session):
        with pytest.raises(NotFoundError, match="Event not found"):
            register_attendee(db_session, event_id=99999, name="A", email="a@x.com")

    def test_blank_fields_rejected(self, db_session: Session, make_event):
        event = make_event()

        with pytest.raises(ValidationFailedError):
            register_attendee(db_session, event_id=event.id, name="   ", email="a@x.com")

    def test_last_seat(self, db_session: Session, make_event):
        """Test booking the last available seat."""
        event = make_event(max_capacity=5, current_attendees=4)
        # keep the counter honest for the rows it claims
        db_session.add_all([
            Attendee(event_id=event.id, name=f"G{i}", email=f"g{i}@x.com") for i in range(4)
        ])
        db_session.commit()

        register_attendee(db_session, event_id=event.id, name="Last", email="last@x.com")
        db_session.refresh(event)
        assert event.current_attendees == 5

        with pytest.raises(CapacityExceededError):
            register_attendee(db_session, event_id=event.id, name="Late", email="late@x.com")


class TestConcurrentRegistration:
    """Registrations racing for the same seats."""

    def test_exactly_capacity_succeeds(self, session_factory, db_session: Session, make_event):
        """M concurrent registrations against N seats: N succeed, M - N are refused."""
        capacity, attempts = 3, 10
        event = make_event(max_capacity=capacity)
        event_id = event.id

        def attempt(i: int):
            db = session_factory()
            try:
                register_attendee(db, event_id=event_id, name=f"User {i}", email=f"user{i}@x.com")
                return "ok"
            except CapacityExceededError:
                return "full"
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=attempts) as executor:
            results = list(executor.map(attempt, range(attempts)))

        assert results.count("ok") == capacity
        assert results.count("full") == attempts - capacity

        db_session.expire_all()
        stored = db_session.get(Event, event_id)
        assert stored.current_attendees == capacity
        assert attendee_rows(db_session, event_id) == capacity

    def test_same_email_races_once(self, session_factory, db_session: Session, make_event):
        """Concurrent registrations with one email leave exactly one row."""
        event = make_event(max_capacity=10)
        event_id = event.id

        def attempt(_):
            db = session_factory()
            try:
                register_attendee(db, event_id=event_id, name="Ann", email="ann@x.com")
                return "ok"
            except DuplicateRegistrationError:
                return "dup"
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=5) as executor:
            results = list(executor.map(attempt, range(5)))

        assert results.count("ok") == 1
        assert results.count("dup") == 4
        db_session.expire_all()
        assert db_session.get(Event, event_id).current_attendees == 1


class TestStorageFailure:
    """A storage error while inserting the attendee rolls back the whole registration."""

    @pytest.mark.parametrize(
        "error",
        [
            OperationalError("INSERT INTO attendees", {}, Exception("disk I/O error")),
            IntegrityError("INSERT INTO attendees", {}, Exception("NOT NULL constraint failed: attendees.name")),
        ],
    )
    def test_insert_failure_rolls_back(self, session_factory, db_session: Session, make_event, monkeypatch, error):
        event = make_event(max_capacity=5)
        event_id = event.id
        seen_counter = []

        def failing_flush(objects=None):
            # The seat has already been claimed by the conditional UPDATE at this point
            seen_counter.append(db_session.scalar(select(Event.current_attendees).where(Event.id == event_id)))
            raise error

        monkeypatch.setattr(db_session, "flush", failing_flush)

        with pytest.raises(InternalError, match="Internal storage error"):
            register_attendee(db_session, event_id=event_id, name="A", email="a@x.com")

        assert seen_counter == [1]

        fresh = session_factory()
        try:
            assert fresh.get(Event, event_id).current_attendees == 0
            assert attendee_rows(fresh, event_id) == 0
        finally:
            fresh.close()

    def test_session_usable_after_failure(self, db_session: Session, make_event, monkeypatch):
        event = make_event(max_capacity=1)
        real_flush = db_session.flush
        calls = []

        def flaky_flush(objects=None):
            calls.append(objects)
            if len(calls) == 1:
                raise OperationalError("INSERT INTO attendees", {}, Exception("database is locked"))
            return real_flush(objects)

        monkeypatch.setattr(db_session, "flush", flaky_flush)
        with pytest.raises(InternalError):
            register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")

        # the rolled-back seat is free again for the retry
        attendee = register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")

        assert attendee.id is not None
        db_session.refresh(event)
        assert event.current_attendees == 1


class TestUnregister:
    """Test unregister_attendee / unregister_by_email."""

    def test_unregister_frees_seat(self, db_session: Session, make_event):
        """Scenario D: unregistering decrements the counter and frees the email."""
        event = make_event(max_capacity=1)
        attendee = register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")
        attendee_id = attendee.id

        unregister_attendee(db_session, event_id=event.id, attendee_id=attendee_id)

        db_session.refresh(event)
        assert event.current_attendees == 0
        with pytest.raises(NotFoundError):
            get_attendee(db_session, attendee_id)

        again = register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")
        assert again.id is not None
        db_session.refresh(event)
        assert event.current_attendees == 1

    def test_unregister_unknown_attendee(self, db_session: Session, make_event):
        event = make_event()

        with pytest.raises(NotFoundError, match="Attendee not found"):
            unregister_attendee(db_session, event_id=event.id, attendee_id=12345)

    def test_unregister_attendee_of_other_event(self, db_session: Session, make_event):
        """An attendee id only resolves within its own event."""
        event = make_event(name="E")
        other = make_event(name="E2")
        attendee = register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")

        with pytest.raises(NotFoundError):
            unregister_attendee(db_session, event_id=other.id, attendee_id=attendee.id)

        db_session.refresh(event)
        assert event.current_attendees == 1

    def test_unregister_missing_event(self, db_session: Session):
        with pytest.raises(NotFoundError, match="Event not found"):
            unregister_attendee(db_session, event_id=99999, attendee_id=1)

    def test_unregister_by_email(self, db_session: Session, make_event):
        event = make_event()
        register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")

        unregister_by_email(db_session, event_id=event.id, email="A@x.com")

        db_session.refresh(event)
        assert event.current_attendees == 0
        assert is_email_registered(db_session, event_id=event.id, email="a@x.com") is False


class TestEventDeletion:
    def test_delete_removes_all_attendees(self, db_session: Session, make_event):
        """Scenario E: deleting an event removes its three attendees."""
        event = make_event()
        ids = [
            register_attendee(db_session, event_id=event.id, name=f"G{i}", email=f"g{i}@x.com").id
            for i in range(3)
        ]

        delete_event(db_session, event.id)

        for attendee_id in ids:
            with pytest.raises(NotFoundError):
                get_attendee(db_session, attendee_id)
        assert db_session.scalar(select(func.count(Attendee.id))) == 0


class TestAttendeeQueries:
    """Listing, searching and counting attendees."""

    def test_list_in_registration_order(self, db_session: Session, make_event):
        event = make_event()
        for i in range(5):
            register_attendee(db_session, event_id=event.id, name=f"Guest {i}", email=f"g{i}@x.com")

        first = list_attendees(db_session, event_id=event.id, page=1, per_page=2)
        last = list_attendees(db_session, event_id=event.id, page=3, per_page=2)

        assert first["total"] == 5
        assert first["last_page"] == 3
        assert [a.email for a in first["items"]] == ["g0@x.com", "g1@x.com"]
        assert [a.email for a in last["items"]] == ["g4@x.com"]

    def test_list_missing_event(self, db_session: Session):
        with pytest.raises(NotFoundError):
            list_attendees(db_session, event_id=99999)

    def test_search_by_name_or_email(self, db_session: Session, make_event):
        event = make_event()
        register_attendee(db_session, event_id=event.id, name="John Doe", email="john@example.com")
        register_attendee(db_session, event_id=event.id, name="Jane Smith", email="jane@corp.io")

        assert [a.name for a in search_attendees(db_session, event_id=event.id, query="doe")] == ["John Doe"]
        assert [a.name for a in search_attendees(db_session, event_id=event.id, query="CORP")] == ["Jane Smith"]
        assert list_attendees(db_session, event_id=event.id, query="ja")["total"] == 1

    def test_search_wildcards_are_literal(self, db_session: Session, make_event):
        """Underscores and percent signs in a query match only themselves."""
        event = make_event()
        register_attendee(db_session, event_id=event.id, name="Under Score", email="a_b@x.com")
        register_attendee(db_session, event_id=event.id, name="Look Alike", email="acb@x.com")
        register_attendee(db_session, event_id=event.id, name="100% Club", email="club@x.com")

        assert [a.email for a in search_attendees(db_session, event_id=event.id, query="a_b")] == ["a_b@x.com"]
        assert list_attendees(db_session, event_id=event.id, query="a_b")["total"] == 1
        assert [a.name for a in search_attendees(db_session, event_id=event.id, query="0% c")] == ["100% Club"]
        assert search_attendees(db_session, event_id=event.id, query="%b") == []

    def test_count_and_check(self, db_session: Session, make_event):
        event = make_event()
        register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")
        register_attendee(db_session, event_id=event.id, name="B", email="b@x.com")

        assert get_attendee_count(db_session, event_id=event.id) == 2
        assert is_email_registered(db_session, event_id=event.id, email="a@x.com") is True
        assert is_email_registered(db_session, event_id=event.id, email="c@x.com") is False


class TestReconcile:
    def test_repairs_drifted_counter(self, db_session: Session, make_event):
        event = make_event(max_capacity=10)
        register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")
        register_attendee(db_session, event_id=event.id, name="B", email="b@x.com")

        db_session.refresh(event)
        event.current_attendees = 5
        db_session.commit()

        result = reconcile_attendee_count(db_session, event_id=event.id)

        assert result == {"event_id": event.id, "stored": 5, "counted": 2, "repaired": True}
        db_session.refresh(event)
        assert event.current_attendees == 2

    def test_consistent_counter_untouched(self, db_session: Session, make_event):
        event = make_event()
        register_attendee(db_session, event_id=event.id, name="A", email="a@x.com")

        result = reconcile_attendee_count(db_session, event_id=event.id)

        assert result["repaired"] is False
        assert result["counted"] == 1
