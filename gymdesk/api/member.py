"""
Member self-service routes.

- GET    /api/member/subscription-status: plan, usage and remaining quota
- GET    /api/member/class-bookings: own confirmed bookings (startDate/endDate)
- POST   /api/member/class-bookings: book a class occurrence
- DELETE /api/member/class-bookings?id=: cancel own booking
- GET    /api/member/plans: plans open for subscription, cheapest first
- GET    /api/member/achievements: achievements with earned state
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from gymdesk.api.deps import get_current_member
from gymdesk.features.achievements.service import list_member_achievements, seed_achievements
from gymdesk.features.bookings.service import book_class, cancel_booking, list_member_bookings
from gymdesk.features.entitlements.service import check_member_subscription
from gymdesk.features.plans.service import list_active_plans
from gymdesk.models.member import Member


router = APIRouter(prefix="/api/member", tags=["member"])


class BookClassRequest(BaseModel):
    """Request to book one occurrence of a schedule slot."""
    model_config = ConfigDict(populate_by_name=True)

    schedule_id: int = Field(alias="scheduleId")
    booking_date: str = Field(alias="bookingDate", min_length=1)


@router.get("/subscription-status")
def subscription_status(member: Member = Depends(get_current_member)):
    return check_member_subscription(member.id)


@router.get("/class-bookings")
def get_class_bookings(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    member: Member = Depends(get_current_member),
):
    return {"bookings": list_member_bookings(member.id, start_date, end_date)}


@router.post("/class-bookings", status_code=201)
def create_class_booking(body: BookClassRequest, member: Member = Depends(get_current_member)):
    """
    Book a class.

    Errors:
        403 SUBSCRIPTION_REQUIRED / CLASS_LIMIT_REACHED
        404 schedule not found
        400 already booked / CLASS_FULL
    """
    booking = book_class(member.id, body.schedule_id, body.booking_date)
    return {"booking": booking}


@router.delete("/class-bookings")
def delete_class_booking(
    booking_id: int = Query(..., alias="id"),
    member: Member = Depends(get_current_member),
):
    cancel_booking(member.id, booking_id)
    return {"success": True}


@router.get("/plans")
def get_plans(member: Member = Depends(get_current_member)):
    return {"plans": list_active_plans()}


@router.get("/achievements")
def get_achievements(member: Member = Depends(get_current_member)):
    seed_achievements()
    return list_member_achievements(member.id)
