from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class Achievement(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    criteria_type: str
    criteria_value: int
    points: int


class MemberAchievement(BaseModel):
    """Achievement as listed for one member."""
    model_config = ConfigDict(frozen=True)

    achievement: Achievement
    earned: bool
    earned_at: Optional[datetime] = None
