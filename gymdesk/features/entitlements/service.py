"""
gymdesk/features/entitlements/service.py

Subscription entitlement checks.

Answers "can this member use the gym right now, and how much of their
quota is left?" for check-ins (per day) and class bookings (per month).

Handles:
- Resolving the member's single active subscription and its plan
- Usage counts over fixed calendar day/month windows
- Structured logs for every decision (no metrics backend)

The check is read-only and never raises for business conditions; callers
turn a negative result into an error with `require_active_subscription`.
"""

from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import select, and_
from sqlalchemy.orm import Session

from gymdesk.core.database import get_db_session, member_subscriptions, subscription_plans
from gymdesk.core.errors import SubscriptionRequiredError
from gymdesk.features.usage.service import normalize_now, get_usage_counts
from gymdesk.models.plan import SubscriptionPlan
from gymdesk.models.subscription import (
    SubscriptionCheck,
    PlanDescriptor,
    UsageCounters,
    UsageLimits,
)


logger = logging.getLogger(__name__)

NO_SUBSCRIPTION = SubscriptionCheck(has_subscription=False, is_active=False)


def _find_active_plan(session: Session, member_id: int) -> Optional[SubscriptionPlan]:
    """Plan of the member's active subscription; the latest period wins if several slipped in."""
    row = session.execute(
        select(subscription_plans)
        .select_from(
            member_subscriptions.join(
                subscription_plans,
                member_subscriptions.c.plan_id == subscription_plans.c.id,
            )
        )
        .where(
            and_(
                member_subscriptions.c.member_id == member_id,
                member_subscriptions.c.status == "active",
            )
        )
        .order_by(
            member_subscriptions.c.current_period_start.desc().nulls_last(),
            member_subscriptions.c.created_at.desc(),
            member_subscriptions.c.id.desc(),
        )
        .limit(1)
    ).first()
    if not row:
        return None
    return SubscriptionPlan(
        id=row.id,
        name=row.name,
        tier=row.tier or "basic",
        price=float(row.price),
        interval=row.interval,
        max_classes_per_month=row.max_classes_per_month,
        max_check_ins_per_day=row.max_check_ins_per_day,
        has_trainer_access=bool(row.has_trainer_access),
        has_personal_training=bool(row.has_personal_training),
        has_progress_tracking=bool(row.has_progress_tracking),
        has_achievements=bool(row.has_achievements),
    )


def _evaluate(session: Session, member_id: int, now: datetime) -> SubscriptionCheck:
    plan = _find_active_plan(session, member_id)
    if plan is None:
        logger.info(
            "[entitlement] NO_SUBSCRIPTION",
            extra={"member_id": member_id},
        )
        return NO_SUBSCRIPTION

    # Interval is a billing concern only; quotas always use calendar windows.
    classes_this_month, check_ins_today = get_usage_counts(member_id, now, session=session)

    max_classes = plan.class_limit
    max_check_ins = plan.check_in_limit
    classes_remaining = max(0, max_classes - classes_this_month)
    can_check_in = check_ins_today < max_check_ins

    logger.info(
        "[entitlement] ACTIVE",
        extra={
            "member_id": member_id,
            "plan_id": plan.id,
            "classes_this_month": classes_this_month,
            "max_classes_per_month": max_classes,
            "check_ins_today": check_ins_today,
            "max_check_ins_per_day": max_check_ins,
        },
    )

    return SubscriptionCheck(
        has_subscription=True,
        is_active=True,
        plan=PlanDescriptor(
            id=plan.id,
            name=plan.name,
            tier=plan.tier,
            max_classes_per_month=max_classes,
            max_check_ins_per_day=max_check_ins,
            has_trainer_access=plan.has_trainer_access,
            has_personal_training=plan.has_personal_training,
            has_progress_tracking=plan.has_progress_tracking,
            has_achievements=plan.has_achievements,
        ),
        usage=UsageCounters(
            classes_this_month=classes_this_month,
            check_ins_today=check_ins_today,
        ),
        limits=UsageLimits(
            classes_remaining=classes_remaining,
            can_check_in=can_check_in,
        ),
    )


def check_member_subscription(
    member_id: int,
    now: Optional[datetime] = None,
    *,
    session: Optional[Session] = None,
) -> SubscriptionCheck:
    """
    Evaluate the member's entitlement at `now`.

    Pass `session` to evaluate inside a caller's transaction (so the counts
    and a following insert see the same snapshot).

    Returns:
        SubscriptionCheck; has_subscription=False when there is no active
        subscription or its plan no longer exists.
    """
    current = normalize_now(now)
    if session is not None:
        return _evaluate(session, member_id, current)
    with get_db_session() as own_session:
        return _evaluate(own_session, member_id, current)


def require_active_subscription(check: SubscriptionCheck, message: Optional[str] = None) -> SubscriptionCheck:
    """Raise SUBSCRIPTION_REQUIRED (403) unless the check grants access."""
    if not check.has_subscription or not check.is_active:
        raise SubscriptionRequiredError(message or "Active subscription required")
    return check
