"""
gymdesk/features/attendance/service.py

Gym check-ins.

A check-in is allowed when the member is active, holds an active
subscription and has check-ins left for today. The limit is re-checked
with the member row locked so concurrent check-ins cannot overshoot it.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select, insert, and_
from sqlalchemy.orm import Session

from gymdesk.core.database import get_db_session, members, attendance
from gymdesk.core.errors import BusinessRuleError, CheckInLimitError, NotFoundError, ValidationError
from gymdesk.features.achievements.service import check_achievements
from gymdesk.features.entitlements.service import check_member_subscription, require_active_subscription
from gymdesk.features.usage.service import normalize_now, local_date, as_utc
from gymdesk.models.attendance import AttendanceRecord


logger = logging.getLogger(__name__)

CHECK_IN_METHODS = ("self_checkin", "qr_code", "manual")
RECENT_LIMIT = 10
LISTING_FILTERS = ("today", "week", "month")


def _row_to_record(row) -> AttendanceRecord:
    return AttendanceRecord(
        id=row.id,
        member_id=row.member_id,
        check_in_time=as_utc(row.check_in_time),
        check_in_date=row.check_in_date,
        method=row.method,
        member_name=getattr(row, "member_name", None),
    )


def _insert_check_in(session: Session, member_id: int, method: str, now: datetime) -> AttendanceRecord:
    session.execute(select(members.c.id).where(members.c.id == member_id).with_for_update())

    check = require_active_subscription(
        check_member_subscription(member_id, now, session=session),
        "Active subscription required for gym access. Please renew your subscription.",
    )
    if not check.limits.can_check_in:
        limit = check.plan.max_check_ins_per_day
        raise CheckInLimitError(
            f"Daily check-in limit reached ({limit} per day)",
            extra={"limit": limit, "used": check.usage.check_ins_today},
        )

    check_in_date = local_date(now)
    result = session.execute(
        insert(attendance).values(
            member_id=member_id,
            check_in_time=now,
            check_in_date=check_in_date,
            method=method,
        )
    )
    return AttendanceRecord(
        id=result.inserted_primary_key[0],
        member_id=member_id,
        check_in_time=now,
        check_in_date=check_in_date,
        method=method,
    )


def check_in(member_id: int, method: str = "self_checkin", now: Optional[datetime] = None) -> AttendanceRecord:
    """
    Record a gym check-in for a member.

    Raises:
        NotFoundError: unknown member (404)
        BusinessRuleError: member account not active (400)
        SubscriptionRequiredError: no active subscription (403)
        CheckInLimitError: daily limit reached (403)
    """
    if method not in CHECK_IN_METHODS:
        raise ValidationError(f"method must be one of {', '.join(CHECK_IN_METHODS)}")
    current = normalize_now(now)

    with get_db_session() as session:
        status = session.execute(select(members.c.status).where(members.c.id == member_id)).scalar_one_or_none()
    if status is None:
        raise NotFoundError("Member not found")
    if status != "active":
        raise BusinessRuleError("Member account is not active. Please contact support.")

    with get_db_session() as session:
        record = _insert_check_in(session, member_id, method, current)

    logger.info(
        "[attendance] CHECKED_IN",
        extra={"member_id": member_id, "attendance_id": record.id, "method": method},
    )

    try:
        check_achievements(member_id, current)
    except Exception:
        logger.exception("[attendance] achievement check failed", extra={"member_id": member_id, "attendance_id": record.id})
    return record


def get_member_attendance(member_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Today's status plus the member's most recent check-ins."""
    today = local_date(now)
    with get_db_session() as session:
        rows = session.execute(
            select(attendance)
            .where(attendance.c.member_id == member_id)
            .order_by(attendance.c.check_in_time.desc(), attendance.c.id.desc())
            .limit(RECENT_LIMIT)
        ).all()
    records = [_row_to_record(row) for row in rows]
    checked_in = any(record.check_in_date == today for record in records)
    return {
        "today_status": "checked_in" if checked_in else "not_checked_in",
        "recent": records,
    }


def listing_start(filter_name: str, now: Optional[datetime] = None) -> date:
    """First gym-local date covered by a `today`/`week`/`month` listing (weeks start on Sunday)."""
    today = local_date(now)
    if filter_name == "today":
        return today
    if filter_name == "week":
        return today - timedelta(days=(today.weekday() + 1) % 7)
    if filter_name == "month":
        return today.replace(day=1)
    raise ValidationError(f"filter must be one of {', '.join(LISTING_FILTERS)}")


def list_attendance(
    start: Optional[date] = None,
    end: Optional[date] = None,
    member_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[AttendanceRecord]:
    """Staff view of check-ins, newest first, filtered by gym-local date and member."""
    query = select(
        attendance.c.id,
        attendance.c.member_id,
        attendance.c.check_in_time,
        attendance.c.check_in_date,
        attendance.c.method,
        members.c.full_name.label("member_name"),
    ).select_from(attendance.join(members, attendance.c.member_id == members.c.id))

    conditions = []
    if start is not None:
        conditions.append(attendance.c.check_in_date >= start)
    if end is not None:
        conditions.append(attendance.c.check_in_date <= end)
    if member_id is not None:
        conditions.append(attendance.c.member_id == member_id)
    if conditions:
        query = query.where(and_(*conditions))

    query = query.order_by(attendance.c.check_in_time.desc(), attendance.c.id.desc())
    if limit:
        query = query.limit(limit)

    with get_db_session() as session:
        rows = session.execute(query).all()
    return [_row_to_record(row) for row in rows]
