"""
gymdesk/models/member.py

Member model: one gym customer, linked to an auth user id.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class Member(BaseModel):
    """
    Member status flips on payment events:
    - active: paying (or staff-activated) member
    - inactive: subscription canceled or never started
    """
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    status: str = "active"
    stripe_customer_id: Optional[str] = None
    created_at: Optional[datetime] = None
