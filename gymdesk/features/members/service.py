"""
Member domain service.
- get_member(member_id) / get_member_by_user_id(user_id)
- get_or_create_member(user_id): the caller's profile, created active on first visit
- create_member(...), set_member_status(...)
"""

from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gymdesk.core.database import get_db_session, members
from gymdesk.core.errors import ValidationError
from gymdesk.models.member import Member

logger = logging.getLogger("gymdesk.members")

MEMBER_STATUSES = ("active", "inactive")


def _row_to_member(row) -> Member:
    return Member(
        id=row.id,
        user_id=row.user_id,
        full_name=row.full_name,
        email=row.email,
        status=row.status,
        stripe_customer_id=row.stripe_customer_id,
        created_at=row.created_at,
    )


def get_member(member_id: int) -> Optional[Member]:
    with get_db_session() as session:
        row = session.execute(select(members).where(members.c.id == member_id)).first()
        return _row_to_member(row) if row else None


def get_member_by_user_id(user_id: str) -> Optional[Member]:
    with get_db_session() as session:
        row = session.execute(select(members).where(members.c.user_id == user_id)).first()
        return _row_to_member(row) if row else None


def get_or_create_member(user_id: str) -> Member:
    """
    Member profile for an authenticated user, created on first visit.

    Self-service signups start `active` with no subscription, so the
    entitlement checks still gate bookings and check-ins until they pay.
    """
    member = get_member_by_user_id(user_id)
    if member:
        return member
    try:
        return create_member(user_id, status="active")
    except IntegrityError:
        # Another first request for the same user created it
        member = get_member_by_user_id(user_id)
        if not member:
            raise
        return member


def create_member(
    user_id: str,
    *,
    full_name: Optional[str] = None,
    email: Optional[str] = None,
    status: str = "inactive",
) -> Member:
    """Create a member profile for an auth user."""
    if status not in MEMBER_STATUSES:
        raise ValidationError(f"Invalid member status: {status}")

    now = datetime.now(timezone.utc)
    with get_db_session() as session:
        result = session.execute(
            insert(members).values(
                user_id=user_id,
                full_name=full_name,
                email=email,
                status=status,
                created_at=now,
            )
        )
        member_id = result.inserted_primary_key[0]

    logger.info("member.created", extra={"member_id": member_id, "status": status})
    return Member(
        id=member_id,
        user_id=user_id,
        full_name=full_name,
        email=email,
        status=status,
        created_at=now,
    )


def set_member_status(member_id: int, status: str, *, session: Optional[Session] = None) -> None:
    if status not in MEMBER_STATUSES:
        raise ValidationError(f"Invalid member status: {status}")
    stmt = update(members).where(members.c.id == member_id).values(status=status)
    if session is not None:
        session.execute(stmt)
        return
    with get_db_session() as own_session:
        own_session.execute(stmt)


def set_stripe_customer(member_id: int, stripe_customer_id: str) -> None:
    with get_db_session() as session:
        session.execute(
            update(members)
            .where(members.c.id == member_id)
            .values(stripe_customer_id=stripe_customer_id)
        )
