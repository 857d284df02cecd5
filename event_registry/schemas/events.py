from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from event_registry.core.timezones import to_local


# ---------- Event ----------
class EventCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    location: str = Field(min_length=1, max_length=255)
    start_time: datetime
    end_time: datetime
    max_capacity: int = Field(ge=1)
    timezone: str | None = Field(default=None, max_length=64)


class EventUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    location: str | None = Field(default=None, min_length=1, max_length=255)
    start_time: datetime | None = None
    end_time: datetime | None = None
    max_capacity: int | None = Field(default=None, ge=1)
    timezone: str | None = Field(default=None, max_length=64)


class EventOut(BaseModel):
    id: int
    name: str
    location: str
    start_time: datetime
    end_time: datetime
    max_capacity: int
    current_attendees: int
    timezone: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @computed_field
    @property
    def start_time_local(self) -> datetime:
        return to_local(self.start_time, self.timezone)

    @computed_field
    @property
    def end_time_local(self) -> datetime:
        return to_local(self.end_time, self.timezone)

    @computed_field
    @property
    def remaining_capacity(self) -> int:
        return self.max_capacity - self.current_attendees


class EventPage(BaseModel):
    items: list[EventOut]
    total: int
    page: int
    per_page: int
    last_page: int


class EventStatsOut(BaseModel):
    event_id: int
    total_capacity: int
    current_attendees: int
    remaining_capacity: int
    capacity_percentage: float
    is_full: bool
    is_upcoming: bool
