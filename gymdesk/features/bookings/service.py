"""
gymdesk/features/bookings/service.py

Class booking service with capacity guard.

Handles:
- Booking one calendar-date occurrence of a weekly schedule slot
- Monthly class quota, duplicate and seat-capacity checks
- Listing and cancelling a member's bookings
- The weekly timetable

Concurrency: the member row and the schedule row are locked
(SELECT ... FOR UPDATE) for the whole check-then-insert, so two requests
racing for the last seat are serialized; the unique constraint on
(member_id, schedule_id, booking_date) backs the duplicate check.
"""

from datetime import date, datetime
from typing import List, Optional, Union
import logging

from sqlalchemy import select, insert, delete, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gymdesk.core.config import settings
from gymdesk.core.database import (
    get_db_session,
    members,
    classes,
    class_schedules,
    class_bookings,
)
from gymdesk.core.errors import (
    AlreadyBookedError,
    ClassFullError,
    ClassLimitError,
    NotFoundError,
    ValidationError,
)
from gymdesk.features.achievements.service import check_achievements
from gymdesk.features.entitlements.service import check_member_subscription, require_active_subscription
from gymdesk.features.usage.service import normalize_now, gym_timezone
from gymdesk.models.booking import ClassBooking, ScheduleSlot


logger = logging.getLogger(__name__)

ALREADY_BOOKED_MESSAGE = "You are already booked for this class"
CLASS_FULL_MESSAGE = "This class is full. You can join the waitlist instead."


def normalize_booking_date(value: Union[str, date, datetime]) -> date:
    """
    Reduce a client-supplied booking date to a calendar date.

    Accepts `YYYY-MM-DD` or a full ISO timestamp; timestamps with an offset
    are read in the gym's timezone.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(gym_timezone()).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("booking_date must be an ISO date (YYYY-MM-DD)")
        return normalize_booking_date(parsed)
    raise ValidationError("booking_date must be an ISO date (YYYY-MM-DD)")


def _capacity(max_capacity: Optional[int]) -> int:
    return max_capacity if max_capacity is not None else settings.DEFAULT_CLASS_CAPACITY


def _schedule_query():
    return select(
        class_schedules.c.id,
        class_schedules.c.class_id,
        class_schedules.c.day_of_week,
        class_schedules.c.start_time,
        class_schedules.c.room,
        classes.c.name.label("class_name"),
        classes.c.max_capacity,
    ).select_from(class_schedules.join(classes, class_schedules.c.class_id == classes.c.id))


def _row_to_slot(row) -> ScheduleSlot:
    return ScheduleSlot(
        id=row.id,
        class_id=row.class_id,
        class_name=row.class_name,
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        room=row.room,
        max_capacity=_capacity(row.max_capacity),
    )


def count_confirmed_for_occurrence(session: Session, schedule_id: int, booking_date: date) -> int:
    return session.execute(
        select(func.count())
        .select_from(class_bookings)
        .where(
            and_(
                class_bookings.c.schedule_id == schedule_id,
                class_bookings.c.booking_date == booking_date,
                class_bookings.c.status == "confirmed",
            )
        )
    ).scalar_one()


def _guard_and_insert(
    session: Session,
    member_id: int,
    schedule_id: int,
    booking_date: date,
    now: datetime,
) -> ClassBooking:
    # Lock order: member, then schedule (check-ins lock the member only)
    session.execute(select(members.c.id).where(members.c.id == member_id).with_for_update())

    check = require_active_subscription(check_member_subscription(member_id, now, session=session))
    if check.limits.classes_remaining <= 0:
        limit = check.plan.max_classes_per_month
        raise ClassLimitError(
            f"You've reached your monthly class limit ({limit} classes). Upgrade your plan for more access.",
            extra={"limit": limit, "used": check.usage.classes_this_month},
        )

    slot_row = session.execute(
        _schedule_query()
        .where(class_schedules.c.id == schedule_id)
        .with_for_update(of=class_schedules)
    ).first()
    if not slot_row:
        raise NotFoundError("Schedule not found")
    slot = _row_to_slot(slot_row)

    existing = session.execute(
        select(class_bookings.c.id).where(
            and_(
                class_bookings.c.member_id == member_id,
                class_bookings.c.schedule_id == schedule_id,
                class_bookings.c.booking_date == booking_date,
            )
        )
    ).first()
    if existing:
        raise AlreadyBookedError(ALREADY_BOOKED_MESSAGE)

    booked = count_confirmed_for_occurrence(session, schedule_id, booking_date)
    if booked >= slot.max_capacity:
        logger.warning(
            "[booking] CLASS_FULL",
            extra={
                "member_id": member_id,
                "schedule_id": schedule_id,
                "booking_date": booking_date.isoformat(),
                "booked": booked,
                "max_capacity": slot.max_capacity,
            },
        )
        raise ClassFullError(CLASS_FULL_MESSAGE)

    result = session.execute(
        insert(class_bookings).values(
            member_id=member_id,
            schedule_id=schedule_id,
            booking_date=booking_date,
            status="confirmed",
            created_at=now,
        )
    )
    booking_id = result.inserted_primary_key[0]

    logger.info(
        "[booking] CONFIRMED",
        extra={
            "member_id": member_id,
            "booking_id": booking_id,
            "schedule_id": schedule_id,
            "booking_date": booking_date.isoformat(),
            "seats_left": slot.max_capacity - booked - 1,
        },
    )
    return ClassBooking(
        id=booking_id,
        member_id=member_id,
        schedule_id=schedule_id,
        booking_date=booking_date,
        status="confirmed",
        created_at=now,
        schedule=slot,
    )


def book_class(
    member_id: int,
    schedule_id: int,
    booking_date: Union[str, date, datetime],
    now: Optional[datetime] = None,
) -> ClassBooking:
    """
    Book a seat for `member_id` on one occurrence of a schedule slot.

    Raises:
        SubscriptionRequiredError: no active subscription (403)
        ClassLimitError: monthly class quota used up (403)
        NotFoundError: schedule or its class missing (404)
        AlreadyBookedError: member already holds this occurrence (400)
        ClassFullError: confirmed bookings reached class capacity (400)
    """
    current = normalize_now(now)
    occurrence = normalize_booking_date(booking_date)

    try:
        with get_db_session() as session:
            booking = _guard_and_insert(session, member_id, schedule_id, occurrence, current)
    except IntegrityError:
        # A concurrent request inserted the same occurrence first
        logger.warning(
            "[booking] duplicate rejected by constraint",
            extra={"member_id": member_id, "schedule_id": schedule_id, "booking_date": occurrence.isoformat()},
        )
        raise AlreadyBookedError(ALREADY_BOOKED_MESSAGE)

    try:
        check_achievements(member_id, current)
    except Exception:
        logger.exception("[booking] achievement check failed", extra={"member_id": member_id, "booking_id": booking.id})
    return booking


def list_member_bookings(
    member_id: int,
    start_date: Optional[Union[str, date]] = None,
    end_date: Optional[Union[str, date]] = None,
) -> List[ClassBooking]:
    """Confirmed bookings for a member, optionally within an inclusive date range."""
    query = (
        select(
            class_bookings.c.id.label("booking_id"),
            class_bookings.c.member_id,
            class_bookings.c.booking_date,
            class_bookings.c.status,
            class_bookings.c.created_at,
            class_schedules.c.id,
            class_schedules.c.class_id,
            class_schedules.c.day_of_week,
            class_schedules.c.start_time,
            class_schedules.c.room,
            classes.c.name.label("class_name"),
            classes.c.max_capacity,
        )
        .select_from(
            class_bookings.join(class_schedules, class_bookings.c.schedule_id == class_schedules.c.id).join(
                classes, class_schedules.c.class_id == classes.c.id
            )
        )
        .where(
            and_(
                class_bookings.c.member_id == member_id,
                class_bookings.c.status == "confirmed",
            )
        )
    )
    if start_date is not None:
        query = query.where(class_bookings.c.booking_date >= normalize_booking_date(start_date))
    if end_date is not None:
        query = query.where(class_bookings.c.booking_date <= normalize_booking_date(end_date))

    with get_db_session() as session:
        rows = session.execute(
            query.order_by(class_bookings.c.booking_date, class_schedules.c.start_time)
        ).all()

    return [
        ClassBooking(
            id=row.booking_id,
            member_id=row.member_id,
            schedule_id=row.id,
            booking_date=row.booking_date,
            status=row.status,
            created_at=row.created_at,
            schedule=_row_to_slot(row),
        )
        for row in rows
    ]


def cancel_booking(member_id: int, booking_id: int) -> None:
    """Delete one of the member's own bookings."""
    with get_db_session() as session:
        result = session.execute(
            delete(class_bookings).where(
                and_(
                    class_bookings.c.id == booking_id,
                    class_bookings.c.member_id == member_id,
                )
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Booking not found")

    logger.info("[booking] CANCELED", extra={"member_id": member_id, "booking_id": booking_id})


def get_weekly_schedule() -> List[ScheduleSlot]:
    with get_db_session() as session:
        rows = session.execute(
            _schedule_query().order_by(class_schedules.c.day_of_week, class_schedules.c.start_time)
        ).all()
    return [_row_to_slot(row) for row in rows]
