"""
gymdesk/models/plan.py

Subscription plan catalog row.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

# Sentinel for "no limit" when a plan leaves a quota empty
UNLIMITED = 999


class SubscriptionPlan(BaseModel):
    """
    A plan carries price/interval for billing and the entitlement limits
    used by quota checks. The interval never affects quota windows.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str] = None
    tier: str = "basic"
    price: float
    interval: str = "month"  # week, month, year
    stripe_price_id: Optional[str] = None
    stripe_annual_price_id: Optional[str] = None
    is_active: bool = True
    max_classes_per_month: Optional[int] = None
    max_check_ins_per_day: Optional[int] = None
    has_trainer_access: bool = False
    has_personal_training: bool = False
    has_progress_tracking: bool = True
    has_achievements: bool = True
    created_at: Optional[datetime] = None

    @property
    def class_limit(self) -> int:
        return self.max_classes_per_month or UNLIMITED

    @property
    def check_in_limit(self) -> int:
        return self.max_check_ins_per_day or UNLIMITED
