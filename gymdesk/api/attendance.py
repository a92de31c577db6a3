"""
Attendance routes.

- GET  /api/member-attendance: today's status + recent check-ins (member)
- POST /api/member-attendance: self check-in (member)
- POST /api/attendance: staff check-in for a member (admin, trainer)
- GET  /api/admin/attendance: check-in listing (admin)
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from gymdesk.api.deps import get_current_member
from gymdesk.core.auth import CurrentUser, require_role
from gymdesk.features.attendance.service import (
    check_in,
    get_member_attendance,
    list_attendance,
    listing_start,
)
from gymdesk.models.member import Member


router = APIRouter(tags=["attendance"])

ADMIN_LISTING_LIMIT = 100


class StaffCheckInRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    member_id: int = Field(alias="memberId")
    method: str = "qr_code"


@router.get("/api/member-attendance")
def member_attendance(member: Member = Depends(get_current_member)):
    return get_member_attendance(member.id)


@router.post("/api/member-attendance")
def member_check_in(member: Member = Depends(get_current_member)):
    """
    Self check-in.

    Errors:
        400 member not active
        403 SUBSCRIPTION_REQUIRED / CHECKIN_LIMIT_REACHED
    """
    record = check_in(member.id, method="self_checkin")
    return {"success": True, "message": "Check-in successful!", "record": record}


@router.post("/api/attendance")
def staff_check_in(
    body: StaffCheckInRequest,
    user: CurrentUser = Depends(require_role("admin", "trainer")),
):
    record = check_in(body.member_id, method=body.method)
    return {"success": True, "record": record}


@router.get("/api/admin/attendance")
def admin_attendance(
    filter_name: str = Query("today", alias="filter"),
    start: Optional[date] = Query(None, alias="startDate"),
    end: Optional[date] = Query(None, alias="endDate"),
    member_id: Optional[int] = Query(None, alias="memberId"),
    user: CurrentUser = Depends(require_role("admin")),
):
    """Explicit startDate/endDate override the today/week/month filter."""
    if start is None and end is None:
        start = listing_start(filter_name)
    records = list_attendance(start=start, end=end, member_id=member_id, limit=ADMIN_LISTING_LIMIT)
    return {"attendance": records}
