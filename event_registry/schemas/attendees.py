from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr


class AttendeeOut(BaseModel):
    id: int
    event_id: int
    name: str
    email: str
    created_at: datetime

    class Config:
        from_attributes = True


class AttendeePage(BaseModel):
    items: list[AttendeeOut]
    total: int
    page: int
    per_page: int
    last_page: int


class AttendeeCountOut(BaseModel):
    event_id: int
    count: int


class RegistrationCheckOut(BaseModel):
    event_id: int
    email: str
    is_registered: bool
