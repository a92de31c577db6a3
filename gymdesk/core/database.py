"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions for the whole service
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Date,
    Boolean,
    Numeric,
    Text,
    Index,
    ForeignKey,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os

from gymdesk.core.config import settings


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def normalize_database_url(url: str) -> str:
    """Route bare PostgreSQL URLs to the psycopg (v3) driver."""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    url = normalize_database_url(url)
    if _engine is not None:
        _engine.dispose()

    if url.startswith("sqlite"):
        # Local/test databases: one file, shared across threads by the TestClient
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits on clean exit, rolls back on any exception.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


# Members (one per authenticated gym customer)
members = Table(
    'members',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, unique=True),
    Column('full_name', Text, nullable=True),
    Column('email', String(255), nullable=True),
    Column('status', String(20), nullable=False, server_default='active'),  # active, inactive
    Column('stripe_customer_id', String(100), nullable=True, unique=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_members_status', 'status'),
    Index('idx_members_created_at', 'created_at'),
)

# Subscription plan catalog
subscription_plans = Table(
    'subscription_plans',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(200), nullable=False),
    Column('description', Text, nullable=True),
    Column('tier', String(50), nullable=False, server_default='basic'),
    Column('price', Numeric(10, 2, asdecimal=False), nullable=False),
    Column('interval', String(10), nullable=False, server_default='month'),  # week, month, year
    Column('stripe_price_id', String(100), nullable=True, index=True),
    Column('stripe_annual_price_id', String(100), nullable=True),
    Column('is_active', Boolean, nullable=False, server_default=text('true')),
    Column('max_classes_per_month', Integer, nullable=True),
    Column('max_check_ins_per_day', Integer, nullable=True),
    Column('has_trainer_access', Boolean, nullable=False, server_default=text('false')),
    Column('has_personal_training', Boolean, nullable=False, server_default=text('false')),
    Column('has_progress_tracking', Boolean, nullable=False, server_default=text('true')),
    Column('has_achievements', Boolean, nullable=False, server_default=text('true')),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Member subscriptions (mirrors provider subscription state)
member_subscriptions = Table(
    'member_subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('member_id', Integer, ForeignKey('members.id'), nullable=False),
    Column('plan_id', Integer, ForeignKey('subscription_plans.id'), nullable=True),
    Column('stripe_subscription_id', String(100), nullable=True, unique=True),
    Column('status', String(50), nullable=False),  # active, past_due, canceled, ...
    Column('current_period_start', DateTime(timezone=True), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('cancel_at_period_end', Boolean, nullable=False, server_default=text('false')),
    Column('canceled_at', DateTime(timezone=True), nullable=True),
    Column('ended_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_member_subscriptions_member_status', 'member_id', 'status'),
    Index('idx_member_subscriptions_created_at', 'created_at'),
    # At most one authoritative active subscription per member
    Index(
        'uq_member_subscriptions_one_active',
        'member_id',
        unique=True,
        postgresql_where=text("status = 'active'"),
        sqlite_where=text("status = 'active'"),
    ),
)

# Classes offered by the gym
classes = Table(
    'classes',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(200), nullable=False),
    Column('description', Text, nullable=True),
    Column('max_capacity', Integer, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Weekly recurring slots for a class
class_schedules = Table(
    'class_schedules',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('class_id', Integer, ForeignKey('classes.id'), nullable=False, index=True),
    Column('day_of_week', Integer, nullable=False),  # 0 = Sunday
    Column('start_time', String(5), nullable=False),  # HH:MM
    Column('room', String(100), nullable=True),
    Index('idx_class_schedules_day_time', 'day_of_week', 'start_time'),
)

# Bookings for one calendar-date occurrence of a schedule slot
class_bookings = Table(
    'class_bookings',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('member_id', Integer, ForeignKey('members.id'), nullable=False),
    Column('schedule_id', Integer, ForeignKey('class_schedules.id'), nullable=False),
    Column('booking_date', Date, nullable=False),
    Column('status', String(20), nullable=False, server_default='confirmed'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('member_id', 'schedule_id', 'booking_date', name='uq_class_bookings_member_occurrence'),
    # Capacity counts: (schedule_id, booking_date, status)
    Index('idx_class_bookings_occurrence', 'schedule_id', 'booking_date', 'status'),
    # Entitlement counts: (member_id, created_at)
    Index('idx_class_bookings_member_created', 'member_id', 'created_at'),
)

# Check-ins (immutable)
attendance = Table(
    'attendance',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('member_id', Integer, ForeignKey('members.id'), nullable=False),
    Column('check_in_time', DateTime(timezone=True), nullable=False),
    Column('check_in_date', Date, nullable=False),
    Column('method', String(30), nullable=False, server_default='self_checkin'),
    Index('idx_attendance_member_time', 'member_id', 'check_in_time'),
    Index('idx_attendance_check_in_date', 'check_in_date'),
)

# Achievement catalog
achievements = Table(
    'achievements',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(200), nullable=False, unique=True),
    Column('description', Text, nullable=True),
    Column('icon', String(20), nullable=True),
    Column('criteria_type', String(50), nullable=False),
    Column('criteria_value', Integer, nullable=False, server_default='1'),
    Column('points', Integer, nullable=False, server_default='0'),
)

member_achievements = Table(
    'member_achievements',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('member_id', Integer, ForeignKey('members.id'), nullable=False, index=True),
    Column('achievement_id', Integer, ForeignKey('achievements.id'), nullable=False),
    Column('earned_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('member_id', 'achievement_id', name='uq_member_achievements_member_achievement'),
)

# Billing events (webhook idempotency)
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(100), nullable=False, unique=True),
    Column('event_type', String(100), nullable=False, index=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('payload_hash', String(64), nullable=False),  # SHA256 of the raw body
    Column('processed', Boolean, nullable=False, server_default=text('false'), index=True),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    Index('idx_billing_events_received_at', 'received_at'),
)
