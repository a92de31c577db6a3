"""
gymdesk/models/subscription.py

Member subscription row and the entitlement check result.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class MemberSubscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    member_id: int
    plan_id: Optional[int] = None
    stripe_subscription_id: Optional[str] = None
    status: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class PlanDescriptor(BaseModel):
    """Plan limits and feature flags as seen by the member."""
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    tier: str
    max_classes_per_month: int
    max_check_ins_per_day: int
    has_trainer_access: bool
    has_personal_training: bool
    has_progress_tracking: bool
    has_achievements: bool


class UsageCounters(BaseModel):
    model_config = ConfigDict(frozen=True)

    classes_this_month: int
    check_ins_today: int


class UsageLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    classes_remaining: int
    can_check_in: bool


class SubscriptionCheck(BaseModel):
    """
    Entitlement snapshot for one member at one instant.

    When has_subscription is False the plan/usage/limits sections are absent.
    """
    model_config = ConfigDict(frozen=True)

    has_subscription: bool
    is_active: bool
    plan: Optional[PlanDescriptor] = None
    usage: Optional[UsageCounters] = None
    limits: Optional[UsageLimits] = None
