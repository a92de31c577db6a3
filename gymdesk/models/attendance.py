from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class AttendanceRecord(BaseModel):
    """One check-in. Immutable once written."""
    model_config = ConfigDict(frozen=True)

    id: int
    member_id: int
    check_in_time: datetime
    check_in_date: date
    method: str
    member_name: Optional[str] = None
