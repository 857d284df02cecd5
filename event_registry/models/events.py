from datetime import datetime

from sqlalchemy import CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from event_registry.core.clock import utcnow
from event_registry.database.columns import UTCDateTime
from event_registry.database.db import Base


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("max_capacity > 0", name="ck_events_max_capacity_positive"),
        CheckConstraint(
            "current_attendees >= 0 AND current_attendees <= max_capacity",
            name="ck_events_attendees_within_capacity",
        ),
        Index("ix_events_start_time", "start_time"),
        Index("ix_events_location", "location"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    current_attendees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    attendees: Mapped[list["Attendee"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def remaining_capacity(self) -> int:
        return self.max_capacity - self.current_attendees

    def has_available_capacity(self) -> bool:
        return self.current_attendees < self.max_capacity

    def is_upcoming(self, now: datetime) -> bool:
        return self.start_time > now


from event_registry.models.attendees import Attendee  # noqa: E402
