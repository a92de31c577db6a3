"""Tests for gym-local day/month windows and usage counters."""
from datetime import datetime, timezone, timedelta

from sqlalchemy import insert

from gymdesk.core.config import settings
from gymdesk.core.database import get_db_session, attendance, class_bookings
from gymdesk.features.entitlements.service import check_member_subscription
from gymdesk.features.usage.service import (
    day_window,
    month_window,
    local_date,
    get_usage_counts,
)


def test_day_window_utc(now):
    start, end = day_window(now)
    assert start == datetime(2026, 3, 18, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 19, tzinfo=timezone.utc)


def test_month_window_ends_at_now(now):
    start, end = month_window(now)
    assert start == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert end == now


def test_windows_follow_gym_timezone(monkeypatch):
    monkeypatch.setattr(settings, "GYM_TIMEZONE", "America/New_York")
    # 02:00 UTC on the 1st is still the last day of February in New York
    instant = datetime(2026, 3, 1, 2, 0, tzinfo=timezone.utc)

    assert local_date(instant).isoformat() == "2026-02-28"
    day_start, day_end = day_window(instant)
    assert day_start == datetime(2026, 2, 28, 5, 0, tzinfo=timezone.utc)
    assert day_end == datetime(2026, 3, 1, 5, 0, tzinfo=timezone.utc)
    month_start, _ = month_window(instant)
    assert month_start == datetime(2026, 2, 1, 5, 0, tzinfo=timezone.utc)


def test_naive_now_is_treated_as_utc():
    start, _ = day_window(datetime(2026, 3, 18, 23, 59))
    assert start == datetime(2026, 3, 18, tzinfo=timezone.utc)


def test_usage_counts_are_windowed(make_member, make_schedule, now):
    member = make_member()
    schedule_id = make_schedule()
    with get_db_session() as session:
        bookings = [
            (timedelta(0), "confirmed", 1),
            (timedelta(days=-3), "confirmed", 2),
            (timedelta(days=-20), "confirmed", 3),
            (timedelta(hours=-1), "cancelled", 4),
        ]
        for offset, status, weeks_ahead in bookings:
            created = now + offset
            session.execute(
                insert(class_bookings).values(
                    member_id=member.id,
                    schedule_id=schedule_id,
                    booking_date=now.date() + timedelta(weeks=weeks_ahead),
                    status=status,
                    created_at=created,
                )
            )
        for offset in (timedelta(hours=-2), timedelta(days=-1)):
            stamp = now + offset
            session.execute(
                insert(attendance).values(
                    member_id=member.id,
                    check_in_time=stamp,
                    check_in_date=stamp.date(),
                    method="self_checkin",
                )
            )

    classes_this_month, check_ins_today = get_usage_counts(member.id, now)
    # Feb 26 booking is outside March; the cancelled one never counts
    assert classes_this_month == 2
    assert check_ins_today == 1


def test_usage_counts_deterministic(make_member, now):
    member = make_member()
    assert get_usage_counts(member.id, now) == get_usage_counts(member.id, now) == (0, 0)


def test_entitlement_usage_matches_usage_counts(active_member, now):
    with get_db_session() as session:
        session.execute(
            insert(attendance).values(
                member_id=active_member.id,
                check_in_time=now - timedelta(hours=1),
                check_in_date=now.date(),
                method="qr_code",
            )
        )
        in_transaction = get_usage_counts(active_member.id, now, session=session)

    check = check_member_subscription(active_member.id, now)

    assert in_transaction == get_usage_counts(active_member.id, now) == (0, 1)
    assert (check.usage.classes_this_month, check.usage.check_ins_today) == in_transaction
