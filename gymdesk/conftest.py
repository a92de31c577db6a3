# gymdesk/conftest.py
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import pytest

# Point the app at a throwaway SQLite file before anything imports settings
_DB_DIR = tempfile.mkdtemp(prefix="gymdesk-tests-")
os.environ["ENV"] = "test"
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{Path(_DB_DIR) / 'gymdesk_test.db'}"
os.environ["SKIP_ENV_VALIDATION"] = "1"
os.environ["GYM_TIMEZONE"] = "UTC"
os.environ["ALLOW_HEADER_AUTH"] = "true"
os.environ["AUTH_SECRET"] = "test-auth-secret"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""

from sqlalchemy import insert  # noqa: E402

from gymdesk.core.database import (  # noqa: E402
    init_engine,
    get_engine,
    create_all_tables,
    reset_database,
    get_db_session,
    classes,
    class_schedules,
    member_subscriptions,
)
from gymdesk.features.members.service import create_member  # noqa: E402
from gymdesk.features.plans.service import create_plan  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    """Create all tables once per test session on the temporary database."""
    init_engine(os.environ["TEST_DATABASE_URL"])
    create_all_tables()
    yield
    get_engine().dispose()
    shutil.rmtree(_DB_DIR, ignore_errors=True)


@pytest.fixture(scope="function")
def reset_db():
    """Drop and recreate every table so each test starts from an empty database."""
    reset_database()
    yield


@pytest.fixture
def now():
    """Fixed instant for deterministic window math (a Wednesday)."""
    return datetime(2026, 3, 18, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_member(reset_db):
    def _make(user_id=None, status="active", full_name="Test Member", email=None):
        return create_member(
            user_id or f"user-{uuid4().hex[:8]}",
            full_name=full_name,
            email=email,
            status=status,
        )

    return _make


@pytest.fixture
def make_plan(reset_db):
    def _make(name="Test Plan", price=50.0, **kwargs):
        kwargs.setdefault("max_classes_per_month", 10)
        kwargs.setdefault("max_check_ins_per_day", 1)
        return create_plan(name, price, **kwargs)

    return _make


@pytest.fixture
def subscribe(reset_db):
    """Insert a member_subscriptions row directly and return its id."""
    def _subscribe(member_id, plan_id, status="active", stripe_subscription_id=None, created_at=None):
        created = created_at or datetime.now(timezone.utc)
        with get_db_session() as session:
            result = session.execute(
                insert(member_subscriptions).values(
                    member_id=member_id,
                    plan_id=plan_id,
                    stripe_subscription_id=stripe_subscription_id,
                    status=status,
                    created_at=created,
                    updated_at=created,
                )
            )
            return result.inserted_primary_key[0]

    return _subscribe


@pytest.fixture
def make_schedule(reset_db):
    """Create a class with one weekly slot and return the schedule id."""
    def _make(class_name="Spin", max_capacity=20, day_of_week=3, start_time="18:00", room="Studio A"):
        with get_db_session() as session:
            class_id = session.execute(
                insert(classes).values(name=class_name, max_capacity=max_capacity)
            ).inserted_primary_key[0]
            schedule_id = session.execute(
                insert(class_schedules).values(
                    class_id=class_id,
                    day_of_week=day_of_week,
                    start_time=start_time,
                    room=room,
                )
            ).inserted_primary_key[0]
        return schedule_id

    return _make


@pytest.fixture
def active_member(make_member, make_plan, subscribe):
    """An active member on a plan with 3 classes/month and 1 check-in/day."""
    member = make_member()
    plan = make_plan(name="Basic", price=30.0, max_classes_per_month=3, max_check_ins_per_day=1)
    subscribe(member.id, plan.id)
    return member


@pytest.fixture
def client(reset_db):
    from fastapi.testclient import TestClient
    from gymdesk.main import app

    return TestClient(app)


@pytest.fixture
def auth_headers():
    """Dev-mode identity headers: auth_headers(user_id, role="member")."""
    def _headers(user_id: str, role: str = "member") -> dict:
        return {"X-User-Id": user_id, "X-User-Role": role}

    return _headers
