"""
gymdesk/features/usage/service.py

Period windows and usage counters for quota checks.

Handles:
- Gym-local calendar day/month windows (converted to UTC for queries)
- Counting confirmed bookings and check-ins inside a window
- Deterministic results for a fixed `now`
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import select, func, and_
from sqlalchemy.orm import Session

from gymdesk.core.config import settings
from gymdesk.core.database import get_db_session, class_bookings, attendance


def gym_timezone() -> ZoneInfo:
    return ZoneInfo(settings.GYM_TIMEZONE or "UTC")


def normalize_now(now: Optional[datetime] = None) -> datetime:
    """Return `now` as an aware UTC datetime (defaults to the current time)."""
    if now is None:
        return datetime.now(timezone.utc)
    return as_utc(now)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes (as read back from SQLite) are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_date(now: Optional[datetime] = None) -> date:
    """Calendar date at the gym for the given instant."""
    return normalize_now(now).astimezone(gym_timezone()).date()


def _local_midnight_utc(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=gym_timezone()).astimezone(timezone.utc)


def day_window(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """(start, end) of the gym-local calendar day containing `now`, in UTC."""
    today = local_date(now)
    return _local_midnight_utc(today), _local_midnight_utc(today + timedelta(days=1))


def month_window(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """(first instant of the gym-local calendar month, now), in UTC."""
    current = normalize_now(now)
    month_start = local_date(current).replace(day=1)
    return _local_midnight_utc(month_start), current


def count_bookings_in_window(session: Session, member_id: int, start: datetime, end: datetime) -> int:
    """Confirmed bookings the member created within [start, end]."""
    return session.execute(
        select(func.count())
        .select_from(class_bookings)
        .where(
            and_(
                class_bookings.c.member_id == member_id,
                class_bookings.c.status == "confirmed",
                class_bookings.c.created_at >= as_utc(start),
                class_bookings.c.created_at <= as_utc(end),
            )
        )
    ).scalar_one()


def count_check_ins_in_window(session: Session, member_id: int, start: datetime, end: datetime) -> int:
    """Attendance rows for the member within [start, end]."""
    return session.execute(
        select(func.count())
        .select_from(attendance)
        .where(
            and_(
                attendance.c.member_id == member_id,
                attendance.c.check_in_time >= as_utc(start),
                attendance.c.check_in_time <= as_utc(end),
            )
        )
    ).scalar_one()


def _usage_counts(session: Session, member_id: int, now: datetime) -> Tuple[int, int]:
    month_start, _ = month_window(now)
    day_start, _ = day_window(now)
    return (
        count_bookings_in_window(session, member_id, month_start, now),
        count_check_ins_in_window(session, member_id, day_start, now),
    )


def get_usage_counts(
    member_id: int,
    now: Optional[datetime] = None,
    *,
    session: Optional[Session] = None,
) -> Tuple[int, int]:
    """
    Return (classes_this_month, check_ins_today) for a member.

    Pure function of stored rows: same member + same now = same counts.
    Pass `session` to count inside a caller's transaction.
    """
    current = normalize_now(now)
    if session is not None:
        return _usage_counts(session, member_id, current)
    with get_db_session() as own_session:
        return _usage_counts(own_session, member_id, current)
