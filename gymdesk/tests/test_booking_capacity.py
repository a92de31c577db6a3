"""
Tests for class booking: capacity guard, duplicates and the monthly quota.
"""
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import insert, select, func

from gymdesk.core.database import get_db_session, class_bookings
from gymdesk.core.errors import (
    AlreadyBookedError,
    ClassFullError,
    ClassLimitError,
    NotFoundError,
    SubscriptionRequiredError,
    ValidationError,
)
from gymdesk.features.bookings.service import (
    book_class,
    cancel_booking,
    count_confirmed_for_occurrence,
    get_weekly_schedule,
    list_member_bookings,
    normalize_booking_date,
)


OCCURRENCE = date(2026, 3, 25)


def _subscribed_member(make_member, make_plan, subscribe, classes=None):
    member = make_member()
    plan = make_plan(max_classes_per_month=classes)
    subscribe(member.id, plan.id)
    return member


def test_book_class_confirms_seat(active_member, make_schedule, now):
    schedule_id = make_schedule(class_name="Yoga", max_capacity=5)

    booking = book_class(active_member.id, schedule_id, OCCURRENCE, now)

    assert booking.status == "confirmed"
    assert booking.booking_date == OCCURRENCE
    assert booking.schedule.class_name == "Yoga"
    assert booking.schedule.max_capacity == 5
    with get_db_session() as session:
        assert count_confirmed_for_occurrence(session, schedule_id, OCCURRENCE) == 1


def test_capacity_plus_one_is_rejected(make_member, make_plan, subscribe, make_schedule, now):
    capacity = 3
    schedule_id = make_schedule(max_capacity=capacity)
    members = [_subscribed_member(make_member, make_plan, subscribe) for _ in range(capacity + 1)]

    for member in members[:capacity]:
        book_class(member.id, schedule_id, OCCURRENCE, now)

    with pytest.raises(ClassFullError) as excinfo:
        book_class(members[-1].id, schedule_id, OCCURRENCE, now)
    assert excinfo.value.code == "CLASS_FULL"
    assert excinfo.value.status_code == 400

    with get_db_session() as session:
        assert count_confirmed_for_occurrence(session, schedule_id, OCCURRENCE) == capacity


def test_capacity_is_per_occurrence(make_member, make_plan, subscribe, make_schedule, now):
    schedule_id = make_schedule(max_capacity=1)
    first = _subscribed_member(make_member, make_plan, subscribe)
    second = _subscribed_member(make_member, make_plan, subscribe)

    book_class(first.id, schedule_id, OCCURRENCE, now)
    booking = book_class(second.id, schedule_id, OCCURRENCE + timedelta(weeks=1), now)
    assert booking.booking_date == date(2026, 4, 1)


def test_missing_capacity_uses_default(active_member, make_schedule, now):
    from gymdesk.core.config import settings

    schedule_id = make_schedule(max_capacity=None)
    booking = book_class(active_member.id, schedule_id, OCCURRENCE, now)
    assert booking.schedule.max_capacity == settings.DEFAULT_CLASS_CAPACITY


def test_cancelled_rows_do_not_hold_seats(make_member, make_plan, subscribe, make_schedule, now):
    schedule_id = make_schedule(max_capacity=1)
    holder = make_member()
    with get_db_session() as session:
        session.execute(
            insert(class_bookings).values(
                member_id=holder.id,
                schedule_id=schedule_id,
                booking_date=OCCURRENCE,
                status="cancelled",
                created_at=now,
            )
        )
    member = _subscribed_member(make_member, make_plan, subscribe)
    assert book_class(member.id, schedule_id, OCCURRENCE, now).status == "confirmed"


def test_duplicate_booking_is_rejected(active_member, make_schedule, now):
    schedule_id = make_schedule()
    book_class(active_member.id, schedule_id, OCCURRENCE, now)

    with pytest.raises(AlreadyBookedError) as excinfo:
        book_class(active_member.id, schedule_id, "2026-03-25T10:00:00Z", now)
    assert excinfo.value.status_code == 400
    assert "already booked" in excinfo.value.message


def test_unique_constraint_backs_duplicate_check(active_member, make_schedule, now):
    from sqlalchemy.exc import IntegrityError

    schedule_id = make_schedule()
    book_class(active_member.id, schedule_id, OCCURRENCE, now)

    with pytest.raises(IntegrityError):
        with get_db_session() as session:
            session.execute(
                insert(class_bookings).values(
                    member_id=active_member.id,
                    schedule_id=schedule_id,
                    booking_date=OCCURRENCE,
                    status="confirmed",
                    created_at=now,
                )
            )


def test_unknown_schedule_is_not_found(active_member, now):
    with pytest.raises(NotFoundError):
        book_class(active_member.id, 9999, OCCURRENCE, now)


def test_booking_requires_subscription(make_member, make_schedule, now):
    member = make_member()
    schedule_id = make_schedule()

    with pytest.raises(SubscriptionRequiredError):
        book_class(member.id, schedule_id, OCCURRENCE, now)


def test_monthly_class_limit(active_member, make_schedule, now):
    # active_member's plan allows 3 classes per month
    schedule_id = make_schedule()
    for week in range(3):
        book_class(active_member.id, schedule_id, OCCURRENCE + timedelta(weeks=week), now)

    with pytest.raises(ClassLimitError) as excinfo:
        book_class(active_member.id, schedule_id, OCCURRENCE + timedelta(weeks=3), now)
    assert excinfo.value.code == "CLASS_LIMIT_REACHED"
    assert excinfo.value.extra == {"limit": 3, "used": 3}
    assert "(3 classes)" in excinfo.value.message


def test_class_limit_resets_next_month(active_member, make_schedule, now):
    schedule_id = make_schedule()
    for week in range(3):
        book_class(active_member.id, schedule_id, OCCURRENCE + timedelta(weeks=week), now)

    next_month = datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)
    booking = book_class(active_member.id, schedule_id, date(2026, 4, 22), next_month)
    assert booking.status == "confirmed"


def test_unlimited_plan_has_no_class_limit(make_member, make_plan, subscribe, make_schedule, now):
    member = _subscribed_member(make_member, make_plan, subscribe, classes=None)
    schedule_id = make_schedule()
    for week in range(5):
        book_class(member.id, schedule_id, OCCURRENCE + timedelta(weeks=week), now)

    with get_db_session() as session:
        total = session.execute(
            select(func.count()).select_from(class_bookings).where(class_bookings.c.member_id == member.id)
        ).scalar_one()
    assert total == 5


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2026-03-25", date(2026, 3, 25)),
        ("2026-03-25T18:00:00Z", date(2026, 3, 25)),
        ("2026-03-25T18:00:00", date(2026, 3, 25)),
        (date(2026, 3, 25), date(2026, 3, 25)),
        (datetime(2026, 3, 25, 23, 30, tzinfo=timezone.utc), date(2026, 3, 25)),
    ],
)
def test_normalize_booking_date(value, expected):
    assert normalize_booking_date(value) == expected


@pytest.mark.parametrize("value", ["", "next tuesday", None, 20260325])
def test_normalize_booking_date_rejects_garbage(value):
    with pytest.raises(ValidationError):
        normalize_booking_date(value)


def test_list_and_cancel_bookings(active_member, make_schedule, now):
    spin = make_schedule(class_name="Spin", start_time="18:00")
    yoga = make_schedule(class_name="Yoga", start_time="07:00")
    late = book_class(active_member.id, spin, OCCURRENCE, now)
    early = book_class(active_member.id, yoga, OCCURRENCE, now)
    book_class(active_member.id, spin, OCCURRENCE + timedelta(weeks=1), now)

    bookings = list_member_bookings(active_member.id)
    assert [b.id for b in bookings[:2]] == [early.id, late.id]
    assert len(bookings) == 3

    in_range = list_member_bookings(active_member.id, start_date="2026-03-25", end_date="2026-03-25")
    assert {b.schedule.class_name for b in in_range} == {"Spin", "Yoga"}

    cancel_booking(active_member.id, late.id)
    assert late.id not in [b.id for b in list_member_bookings(active_member.id)]


def test_cancel_frees_the_seat(make_member, make_plan, subscribe, make_schedule, now):
    schedule_id = make_schedule(max_capacity=1)
    first = _subscribed_member(make_member, make_plan, subscribe)
    second = _subscribed_member(make_member, make_plan, subscribe)

    booking = book_class(first.id, schedule_id, OCCURRENCE, now)
    cancel_booking(first.id, booking.id)
    assert book_class(second.id, schedule_id, OCCURRENCE, now).status == "confirmed"


def test_cancel_other_members_booking_is_not_found(make_member, make_plan, subscribe, make_schedule, now):
    schedule_id = make_schedule()
    owner = _subscribed_member(make_member, make_plan, subscribe)
    other = _subscribed_member(make_member, make_plan, subscribe)
    booking = book_class(owner.id, schedule_id, OCCURRENCE, now)

    with pytest.raises(NotFoundError):
        cancel_booking(other.id, booking.id)


def test_weekly_schedule_is_ordered(make_schedule, reset_db):
    make_schedule(class_name="Late", day_of_week=2, start_time="19:00")
    make_schedule(class_name="Sunday", day_of_week=0, start_time="10:00")
    make_schedule(class_name="Early", day_of_week=2, start_time="06:30")

    assert [slot.class_name for slot in get_weekly_schedule()] == ["Sunday", "Early", "Late"]
