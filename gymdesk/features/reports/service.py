"""
gymdesk/features/reports/service.py

Admin dashboard numbers and the revenue report.

Revenue here is list price: a subscription contributes its plan's price
once, in the period it was created. Monthly recurring revenue normalizes
each active subscription's price to a month.
"""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional, Tuple, Union

from sqlalchemy import select, func, and_

from gymdesk.core.database import (
    get_db_session,
    members,
    member_subscriptions,
    subscription_plans,
    attendance,
)
from gymdesk.core.errors import ValidationError
from gymdesk.features.usage.service import normalize_now, local_date, gym_timezone, month_window, as_utc


REPORT_PERIODS = ("month", "quarter", "year", "custom")
SUBSCRIPTION_LIST_LIMIT = 100


def monthly_price(price: float, interval: Optional[str]) -> float:
    """Price normalized to one month of service."""
    price = float(price or 0)
    if interval == "year":
        return price / 12
    if interval == "week":
        return price * 52 / 12
    return price


def _months_back(value: datetime, months: int) -> datetime:
    year, month = divmod(value.year * 12 + (value.month - 1) - months, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _start_of(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    return datetime.combine(value, time.min, tzinfo=gym_timezone()).astimezone(timezone.utc)


def _end_of(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    return _start_of(value + timedelta(days=1)) - timedelta(microseconds=1)


def report_range(
    period: str,
    start: Optional[Union[date, datetime]] = None,
    end: Optional[Union[date, datetime]] = None,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """Inclusive UTC bounds for a report period."""
    current = normalize_now(now)
    if period == "month":
        month_start, _ = month_window(current)
        local_start = month_start.astimezone(gym_timezone())
        next_month = _months_back(local_start, -1)
        return month_start, next_month.astimezone(timezone.utc) - timedelta(microseconds=1)
    if period == "quarter":
        return _months_back(current, 3), current
    if period == "year":
        return _months_back(current, 12), current
    if period == "custom":
        range_start = _start_of(start) if start is not None else _months_back(current, 1)
        range_end = _end_of(end) if end is not None else current
        if range_start > range_end:
            raise ValidationError("startDate must not be after endDate")
        return range_start, range_end
    raise ValidationError(f"period must be one of {', '.join(REPORT_PERIODS)}")


def dashboard_stats(now: Optional[datetime] = None) -> Dict[str, Any]:
    today = local_date(now)
    with get_db_session() as session:
        total_members = session.execute(select(func.count()).select_from(members)).scalar_one()
        active_members = session.execute(
            select(func.count()).select_from(members).where(members.c.status == "active")
        ).scalar_one()
        today_attendance = session.execute(
            select(func.count()).select_from(attendance).where(attendance.c.check_in_date == today)
        ).scalar_one()
        active_prices = session.execute(
            select(subscription_plans.c.price, subscription_plans.c.interval)
            .select_from(
                member_subscriptions.join(
                    subscription_plans, member_subscriptions.c.plan_id == subscription_plans.c.id
                )
            )
            .where(member_subscriptions.c.status == "active")
        ).all()

    return {
        "total_members": total_members,
        "active_members": active_members,
        "today_attendance": today_attendance,
        "monthly_revenue": round(sum(monthly_price(row.price, row.interval) for row in active_prices), 2),
    }


def revenue_report(
    period: str = "month",
    start: Optional[Union[date, datetime]] = None,
    end: Optional[Union[date, datetime]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Revenue, membership and attendance numbers for a period.

    Periods: `month` (current calendar month), `quarter` and `year`
    (3 and 12 months back from now), `custom` (start/end, defaulting to
    the last month).
    """
    range_start, range_end = report_range(period, start, end, now)

    with get_db_session() as session:
        subscriptions = session.execute(
            select(
                member_subscriptions.c.id,
                member_subscriptions.c.member_id,
                member_subscriptions.c.status,
                member_subscriptions.c.created_at,
                members.c.full_name.label("member_name"),
                subscription_plans.c.name.label("plan_name"),
                subscription_plans.c.price,
            )
            .select_from(
                member_subscriptions.join(members, member_subscriptions.c.member_id == members.c.id).outerjoin(
                    subscription_plans, member_subscriptions.c.plan_id == subscription_plans.c.id
                )
            )
            .where(
                and_(
                    member_subscriptions.c.created_at >= range_start,
                    member_subscriptions.c.created_at <= range_end,
                )
            )
            .order_by(member_subscriptions.c.created_at.desc(), member_subscriptions.c.id.desc())
        ).all()

        new_members = session.execute(
            select(func.count())
            .select_from(members)
            .where(and_(members.c.created_at >= range_start, members.c.created_at <= range_end))
        ).scalar_one()

        daily = session.execute(
            select(attendance.c.check_in_date, func.count())
            .where(
                and_(
                    attendance.c.check_in_time >= range_start,
                    attendance.c.check_in_time <= range_end,
                )
            )
            .group_by(attendance.c.check_in_date)
            .order_by(attendance.c.check_in_date)
        ).all()

    revenue_by_plan: Dict[str, Dict[str, Any]] = {}
    total_revenue = 0.0
    for sub in subscriptions:
        price = float(sub.price or 0)
        total_revenue += price
        bucket = revenue_by_plan.setdefault(sub.plan_name or "Unknown", {"count": 0, "revenue": 0.0})
        bucket["count"] += 1
        bucket["revenue"] = round(bucket["revenue"] + price, 2)

    attendance_by_day = {day.isoformat(): count for day, count in daily}
    total_attendance = sum(attendance_by_day.values())

    return {
        "period": {"name": period, "start": range_start, "end": range_end},
        "summary": {
            "total_revenue": round(total_revenue, 2),
            "total_subscriptions": len(subscriptions),
            "new_members": new_members,
            "total_attendance": total_attendance,
            "avg_daily_attendance": round(total_attendance / max(1, len(attendance_by_day)), 2),
        },
        "revenue_by_plan": revenue_by_plan,
        "attendance_by_day": attendance_by_day,
        "subscriptions": [
            {
                "id": sub.id,
                "member_id": sub.member_id,
                "member_name": sub.member_name,
                "plan_name": sub.plan_name,
                "price": float(sub.price or 0),
                "status": sub.status,
                "created_at": sub.created_at,
            }
            for sub in subscriptions[:SUBSCRIPTION_LIST_LIMIT]
        ],
    }
