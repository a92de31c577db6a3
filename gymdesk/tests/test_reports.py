"""Tests for dashboard stats and the revenue report."""
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import insert

from gymdesk.core.database import get_db_session, attendance
from gymdesk.core.errors import ValidationError
from gymdesk.features.reports.service import (
    dashboard_stats,
    monthly_price,
    report_range,
    revenue_report,
)


def _check_in_at(member_id, stamp):
    with get_db_session() as session:
        session.execute(
            insert(attendance).values(
                member_id=member_id,
                check_in_time=stamp,
                check_in_date=stamp.date(),
                method="manual",
            )
        )


@pytest.mark.parametrize(
    "price, interval, expected",
    [(30.0, "month", 30.0), (1200.0, "year", 100.0), (12.0, "week", 52.0), (0, None, 0.0)],
)
def test_monthly_price(price, interval, expected):
    assert monthly_price(price, interval) == pytest.approx(expected)


def test_month_range_covers_calendar_month(now):
    start, end = report_range("month", now=now)
    assert start == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert end == datetime(2026, 4, 1, tzinfo=timezone.utc) - timedelta(microseconds=1)


def test_quarter_and_year_ranges(now):
    assert report_range("quarter", now=now) == (datetime(2025, 12, 18, 15, 0, tzinfo=timezone.utc), now)
    assert report_range("year", now=now) == (datetime(2025, 3, 18, 15, 0, tzinfo=timezone.utc), now)


def test_custom_range_is_inclusive_of_end_date(now):
    start, end = report_range("custom", date(2026, 3, 1), date(2026, 3, 10), now)
    assert start == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 11, tzinfo=timezone.utc) - timedelta(microseconds=1)


def test_custom_range_rejects_inverted_bounds(now):
    with pytest.raises(ValidationError):
        report_range("custom", date(2026, 3, 10), date(2026, 3, 1), now)


def test_unknown_period(now):
    with pytest.raises(ValidationError):
        report_range("fortnight", now=now)


def test_dashboard_stats(make_member, make_plan, subscribe, now):
    monthly = make_plan(name="Monthly", price=30.0)
    annual = make_plan(name="Annual", price=1200.0, interval="year")
    alice = make_member()
    bob = make_member()
    make_member(status="inactive")
    subscribe(alice.id, monthly.id)
    subscribe(bob.id, annual.id)
    _check_in_at(alice.id, now)
    _check_in_at(bob.id, now - timedelta(days=1))

    stats = dashboard_stats(now)

    assert stats == {
        "total_members": 3,
        "active_members": 2,
        "today_attendance": 1,
        "monthly_revenue": 130.0,
    }


def test_revenue_report_for_month(make_member, make_plan, subscribe, now):
    basic = make_plan(name="Basic", price=30.0)
    premium = make_plan(name="Premium", price=60.0)
    alice = make_member(full_name="Alice")
    bob = make_member(full_name="Bob")
    carol = make_member(full_name="Carol")
    subscribe(alice.id, basic.id, created_at=now - timedelta(days=2))
    subscribe(bob.id, premium.id, created_at=now - timedelta(days=10))
    # Last month: outside the period
    subscribe(carol.id, basic.id, created_at=datetime(2026, 2, 20, tzinfo=timezone.utc))

    _check_in_at(alice.id, now - timedelta(days=1))
    _check_in_at(bob.id, now - timedelta(days=1, hours=2))
    _check_in_at(alice.id, now)

    report = revenue_report("month", now=now)

    assert report["period"]["name"] == "month"
    summary = report["summary"]
    assert summary["total_revenue"] == 90.0
    assert summary["total_subscriptions"] == 2
    assert summary["total_attendance"] == 3
    assert summary["avg_daily_attendance"] == 1.5
    assert report["revenue_by_plan"] == {
        "Basic": {"count": 1, "revenue": 30.0},
        "Premium": {"count": 1, "revenue": 60.0},
    }
    assert report["attendance_by_day"] == {"2026-03-17": 2, "2026-03-18": 1}
    assert [sub["member_name"] for sub in report["subscriptions"]] == ["Alice", "Bob"]


def test_revenue_report_empty_period(reset_db, now):
    report = revenue_report("custom", date(2026, 1, 1), date(2026, 1, 31), now)
    assert report["summary"]["total_revenue"] == 0
    assert report["summary"]["avg_daily_attendance"] == 0
    assert report["revenue_by_plan"] == {}
    assert report["subscriptions"] == []


def test_new_members_counted_by_signup_time(make_member):
    make_member()
    make_member()

    # Defaults to the month leading up to the current instant
    report = revenue_report("custom")
    assert report["summary"]["new_members"] == 2
