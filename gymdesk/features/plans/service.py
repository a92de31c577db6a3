"""
gymdesk/features/plans/service.py

Subscription plan catalog service.

Handles:
- Plan seeding (basic, premium, elite)
- Plan creation with catalog defaults
- Plan lookup, the member-facing catalog and per-plan active member counts
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select, insert, func
from sqlalchemy.orm import Session

from gymdesk.core.database import get_db_session, subscription_plans, member_subscriptions
from gymdesk.core.errors import ValidationError
from gymdesk.models.plan import SubscriptionPlan

logger = logging.getLogger("gymdesk.plans")

PLAN_INTERVALS = ("week", "month", "year")

# Default plan catalog
DEFAULT_PLANS = {
    "Basic": {
        "description": "Gym floor access and a few classes a month",
        "tier": "basic",
        "price": 29.0,
        "interval": "month",
        "max_classes_per_month": 4,
        "max_check_ins_per_day": 1,
        "has_trainer_access": False,
        "has_personal_training": False,
    },
    "Premium": {
        "description": "More classes and trainer access",
        "tier": "premium",
        "price": 59.0,
        "interval": "month",
        "max_classes_per_month": 12,
        "max_check_ins_per_day": 2,
        "has_trainer_access": True,
        "has_personal_training": False,
    },
    "Elite Annual": {
        "description": "Unlimited classes and personal training, billed yearly",
        "tier": "elite",
        "price": 1200.0,
        "interval": "year",
        "max_classes_per_month": None,  # unlimited
        "max_check_ins_per_day": 3,
        "has_trainer_access": True,
        "has_personal_training": True,
    },
}


def _row_to_plan(row) -> SubscriptionPlan:
    return SubscriptionPlan(
        id=row.id,
        name=row.name,
        description=row.description,
        tier=row.tier,
        price=float(row.price),
        interval=row.interval,
        stripe_price_id=row.stripe_price_id,
        stripe_annual_price_id=row.stripe_annual_price_id,
        is_active=row.is_active,
        max_classes_per_month=row.max_classes_per_month,
        max_check_ins_per_day=row.max_check_ins_per_day,
        has_trainer_access=row.has_trainer_access,
        has_personal_training=row.has_personal_training,
        has_progress_tracking=row.has_progress_tracking,
        has_achievements=row.has_achievements,
        created_at=row.created_at,
    )


def seed_plans() -> None:
    """
    Seed the default plan catalog (idempotent).

    Plans are matched by name; existing rows are left untouched.
    """
    with get_db_session() as session:
        for name, config in DEFAULT_PLANS.items():
            existing = session.execute(
                select(subscription_plans.c.id).where(subscription_plans.c.name == name)
            ).first()
            if existing:
                continue
            session.execute(
                insert(subscription_plans).values(
                    name=name,
                    is_active=True,
                    has_progress_tracking=True,
                    has_achievements=True,
                    created_at=datetime.now(timezone.utc),
                    **config,
                )
            )


def create_plan(
    name: str,
    price: float,
    *,
    description: Optional[str] = None,
    interval: Optional[str] = None,
    tier: Optional[str] = None,
    stripe_price_id: Optional[str] = None,
    stripe_annual_price_id: Optional[str] = None,
    max_classes_per_month: Optional[int] = 3,
    max_check_ins_per_day: Optional[int] = 1,
    has_trainer_access: bool = False,
    has_personal_training: bool = False,
    has_progress_tracking: bool = True,
    has_achievements: bool = True,
) -> SubscriptionPlan:
    """Create a catalog plan. Missing interval/tier fall back to month/basic."""
    interval = interval or "month"
    if interval not in PLAN_INTERVALS:
        raise ValidationError(f"interval must be one of {', '.join(PLAN_INTERVALS)}")
    if price is None or price < 0:
        raise ValidationError("price must be a non-negative number")
    if not name or not name.strip():
        raise ValidationError("name is required")

    values: Dict[str, Any] = dict(
        name=name.strip(),
        description=description,
        tier=tier or "basic",
        price=price,
        interval=interval,
        stripe_price_id=stripe_price_id,
        stripe_annual_price_id=stripe_annual_price_id,
        is_active=True,
        max_classes_per_month=max_classes_per_month,
        max_check_ins_per_day=max_check_ins_per_day,
        has_trainer_access=has_trainer_access,
        has_personal_training=has_personal_training,
        has_progress_tracking=has_progress_tracking,
        has_achievements=has_achievements,
        created_at=datetime.now(timezone.utc),
    )
    with get_db_session() as session:
        result = session.execute(insert(subscription_plans).values(**values))
        plan_id = result.inserted_primary_key[0]

    logger.info("plan.created", extra={"plan_id": plan_id, "tier": values["tier"], "interval": interval})
    return SubscriptionPlan(id=plan_id, **values)


def get_plan(plan_id: int, *, session: Optional[Session] = None) -> Optional[SubscriptionPlan]:
    stmt = select(subscription_plans).where(subscription_plans.c.id == plan_id)
    if session is not None:
        row = session.execute(stmt).first()
        return _row_to_plan(row) if row else None
    with get_db_session() as own_session:
        row = own_session.execute(stmt).first()
        return _row_to_plan(row) if row else None


def get_plan_by_price_id(price_id: str) -> Optional[SubscriptionPlan]:
    """Resolve a plan from a provider price id (monthly or annual)."""
    with get_db_session() as session:
        row = session.execute(
            select(subscription_plans).where(
                (subscription_plans.c.stripe_price_id == price_id)
                | (subscription_plans.c.stripe_annual_price_id == price_id)
            )
        ).first()
        return _row_to_plan(row) if row else None


def list_plans() -> List[SubscriptionPlan]:
    with get_db_session() as session:
        rows = session.execute(
            select(subscription_plans).order_by(subscription_plans.c.created_at.desc(), subscription_plans.c.id.desc())
        ).all()
        return [_row_to_plan(row) for row in rows]


def list_active_plans() -> List[SubscriptionPlan]:
    """Plans members can subscribe to, cheapest first."""
    with get_db_session() as session:
        rows = session.execute(
            select(subscription_plans)
            .where(subscription_plans.c.is_active.is_(True))
            .order_by(subscription_plans.c.price.asc(), subscription_plans.c.id.asc())
        ).all()
        return [_row_to_plan(row) for row in rows]


def list_plans_with_counts() -> List[Dict[str, Any]]:
    """Every plan with the number of members currently on an active subscription to it."""
    with get_db_session() as session:
        counts = dict(
            session.execute(
                select(member_subscriptions.c.plan_id, func.count())
                .where(member_subscriptions.c.status == "active")
                .group_by(member_subscriptions.c.plan_id)
            ).all()
        )
    return [
        {**plan.model_dump(), "member_count": counts.get(plan.id, 0)}
        for plan in list_plans()
    ]
