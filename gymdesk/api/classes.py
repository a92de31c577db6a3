"""
Class timetable routes.

- GET /api/classes/schedule: weekly schedule with class names and capacity
"""
from fastapi import APIRouter, Depends

from gymdesk.core.auth import CurrentUser, get_current_user
from gymdesk.features.bookings.service import get_weekly_schedule


router = APIRouter(prefix="/api/classes", tags=["classes"])


@router.get("/schedule")
def weekly_schedule(user: CurrentUser = Depends(get_current_user)):
    return {"schedule": get_weekly_schedule()}
