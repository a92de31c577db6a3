from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class ScheduleSlot(BaseModel):
    """A weekly recurring slot joined to its class."""
    model_config = ConfigDict(frozen=True)

    id: int
    class_id: int
    class_name: str
    day_of_week: int
    start_time: str
    room: Optional[str] = None
    max_capacity: int


class ClassBooking(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    member_id: int
    schedule_id: int
    booking_date: date
    status: str = "confirmed"
    created_at: Optional[datetime] = None
    schedule: Optional[ScheduleSlot] = None
