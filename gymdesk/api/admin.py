"""
Admin routes.

- GET  /api/admin/subscriptions/plans: plans with active member counts
- POST /api/admin/subscriptions/plans: create a plan
- GET  /api/admin/dashboard-stats: headline numbers
- GET  /api/admin/reports/revenue: revenue/attendance report
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from gymdesk.core.auth import CurrentUser, require_role
from gymdesk.features.plans.service import create_plan, list_plans_with_counts
from gymdesk.features.reports.service import dashboard_stats, revenue_report


router = APIRouter(prefix="/api/admin", tags=["admin"])


class CreatePlanRequest(BaseModel):
    """Plan creation payload; omitted fields take catalog defaults."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    price: float = Field(ge=0)
    description: Optional[str] = None
    interval: Optional[str] = None
    tier: Optional[str] = None
    stripe_price_id: Optional[str] = Field(None, alias="stripePriceId")
    stripe_annual_price_id: Optional[str] = Field(None, alias="stripeAnnualPriceId")
    max_classes_per_month: Optional[int] = Field(3, alias="maxClassesPerMonth", ge=0)
    max_check_ins_per_day: Optional[int] = Field(1, alias="maxCheckInsPerDay", ge=0)
    has_trainer_access: bool = Field(False, alias="hasTrainerAccess")
    has_personal_training: bool = Field(False, alias="hasPersonalTraining")
    has_progress_tracking: bool = Field(True, alias="hasProgressTracking")
    has_achievements: bool = Field(True, alias="hasAchievements")


@router.get("/subscriptions/plans")
def get_plans(user: CurrentUser = Depends(require_role("admin"))):
    return {"plans": list_plans_with_counts()}


@router.post("/subscriptions/plans", status_code=201)
def post_plan(body: CreatePlanRequest, user: CurrentUser = Depends(require_role("admin"))):
    plan = create_plan(**body.model_dump())
    return {"plan": plan}


@router.get("/dashboard-stats")
def get_dashboard_stats(user: CurrentUser = Depends(require_role("admin"))):
    return {"stats": dashboard_stats()}


@router.get("/reports/revenue")
def get_revenue_report(
    period: str = Query("month"),
    start: Optional[date] = Query(None, alias="startDate"),
    end: Optional[date] = Query(None, alias="endDate"),
    user: CurrentUser = Depends(require_role("admin")),
):
    return revenue_report(period, start, end)
