"""
gymdesk/features/achievements/service.py

Count-based achievements.

An achievement is earned once the member's count for its criteria reaches
`criteria_value`. Awards are permanent; the (member_id, achievement_id)
unique constraint makes awarding idempotent under concurrent check-ins.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import logging

from sqlalchemy import select, insert, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gymdesk.core.database import (
    get_db_session,
    achievements,
    member_achievements,
    attendance,
    class_bookings,
)
from gymdesk.models.achievement import Achievement, MemberAchievement


logger = logging.getLogger(__name__)

DEFAULT_ACHIEVEMENTS = [
    {"name": "First Workout", "description": "Complete your first workout", "icon": "🎯",
     "criteria_type": "workouts_completed", "criteria_value": 1, "points": 10},
    {"name": "Week Warrior", "description": "Complete 7 workouts", "icon": "🔥",
     "criteria_type": "workouts_completed", "criteria_value": 7, "points": 50},
    {"name": "Month Master", "description": "Complete 30 workouts", "icon": "💪",
     "criteria_type": "workouts_completed", "criteria_value": 30, "points": 200},
    {"name": "First Class", "description": "Book your first class", "icon": "📅",
     "criteria_type": "classes_booked", "criteria_value": 1, "points": 10},
    {"name": "Class Regular", "description": "Book 10 classes", "icon": "🏅",
     "criteria_type": "classes_booked", "criteria_value": 10, "points": 75},
]


def _count_workouts(session: Session, member_id: int) -> int:
    return session.execute(
        select(func.count()).select_from(attendance).where(attendance.c.member_id == member_id)
    ).scalar_one()


def _count_classes_booked(session: Session, member_id: int) -> int:
    return session.execute(
        select(func.count())
        .select_from(class_bookings)
        .where(
            and_(
                class_bookings.c.member_id == member_id,
                class_bookings.c.status == "confirmed",
            )
        )
    ).scalar_one()


CRITERIA_COUNTERS: Dict[str, Callable[[Session, int], int]] = {
    "workouts_completed": _count_workouts,
    "classes_booked": _count_classes_booked,
}


def _row_to_achievement(row) -> Achievement:
    return Achievement(
        id=row.id,
        name=row.name,
        description=row.description,
        icon=row.icon,
        criteria_type=row.criteria_type,
        criteria_value=row.criteria_value or 1,
        points=row.points or 0,
    )


def seed_achievements() -> int:
    """Insert any missing default achievements (matched by name). Returns how many were added."""
    added = 0
    with get_db_session() as session:
        existing = set(session.execute(select(achievements.c.name)).scalars().all())
    for entry in DEFAULT_ACHIEVEMENTS:
        if entry["name"] in existing:
            continue
        try:
            with get_db_session() as session:
                session.execute(insert(achievements).values(**entry))
        except IntegrityError:
            # Seeded by a concurrent request
            continue
        added += 1
    if added:
        logger.info("achievements.seeded", extra={"count": added})
    return added


def check_achievements(member_id: int, now: Optional[datetime] = None) -> List[Achievement]:
    """
    Award every unearned achievement whose threshold the member now meets.

    Returns:
        The achievements newly awarded by this call.
    """
    earned_at = now or datetime.now(timezone.utc)
    awarded: List[Achievement] = []

    with get_db_session() as session:
        catalog = [_row_to_achievement(row) for row in session.execute(select(achievements)).all()]
        earned_ids = set(
            session.execute(
                select(member_achievements.c.achievement_id).where(member_achievements.c.member_id == member_id)
            ).scalars().all()
        )
        counts: Dict[str, int] = {}
        candidates = []
        for achievement in catalog:
            if achievement.id in earned_ids:
                continue
            counter = CRITERIA_COUNTERS.get(achievement.criteria_type)
            if counter is None:
                continue
            if achievement.criteria_type not in counts:
                counts[achievement.criteria_type] = counter(session, member_id)
            if counts[achievement.criteria_type] >= achievement.criteria_value:
                candidates.append(achievement)

    for achievement in candidates:
        try:
            with get_db_session() as session:
                session.execute(
                    insert(member_achievements).values(
                        member_id=member_id,
                        achievement_id=achievement.id,
                        earned_at=earned_at,
                    )
                )
        except IntegrityError:
            # Awarded by a concurrent check
            continue
        awarded.append(achievement)
        logger.info(
            "achievement.awarded",
            extra={"member_id": member_id, "achievement_id": achievement.id, "achievement": achievement.name},
        )

    return awarded


def list_member_achievements(member_id: int) -> Dict[str, Any]:
    """All achievements with the member's earned state, earned count and total points."""
    with get_db_session() as session:
        catalog = [
            _row_to_achievement(row)
            for row in session.execute(select(achievements).order_by(achievements.c.id)).all()
        ]
        earned = dict(
            session.execute(
                select(member_achievements.c.achievement_id, member_achievements.c.earned_at).where(
                    member_achievements.c.member_id == member_id
                )
            ).all()
        )

    entries = [
        MemberAchievement(
            achievement=achievement,
            earned=achievement.id in earned,
            earned_at=earned.get(achievement.id),
        )
        for achievement in catalog
    ]
    return {
        "achievements": entries,
        "earned_count": len(earned),
        "total_points": sum(a.points for a in catalog if a.id in earned),
    }
