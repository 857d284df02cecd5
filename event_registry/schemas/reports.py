from pydantic import BaseModel


class ReportOut(BaseModel):
    total_events: int
    upcoming_events: int
    total_capacity: int
    total_attendees: int
    registered_rows: int

    class Config:
        from_attributes = True


class ReconcileOut(BaseModel):
    event_id: int
    stored: int
    counted: int
    repaired: bool
