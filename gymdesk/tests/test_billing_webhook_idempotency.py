"""
Test billing webhook processing.

Verifies duplicate webhook events are not reprocessed and that each
handled event type moves subscription/member state as expected.
"""
import hashlib
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import select

from gymdesk.core.database import get_db_session, billing_events, member_subscriptions
from gymdesk.core.errors import BillingDisabledError
from gymdesk.features.billing.provider import BillingWebhookResult, ProviderSubscription
from gymdesk.features.billing.service import process_webhook_event
from gymdesk.features.entitlements.service import check_member_subscription
from gymdesk.features.members.service import get_member


HEADERS = {"stripe-signature": "sig123"}
PERIOD_END = datetime(2026, 4, 18, tzinfo=timezone.utc)


@pytest.fixture
def mock_webhook_provider():
    """Mock provider that returns a canned webhook result."""
    with patch("gymdesk.features.billing.service.get_provider") as mock_get:
        mock_provider = Mock()
        mock_get.return_value = mock_provider
        yield mock_provider


def _subscription(sub_id="sub_123", status="active"):
    return ProviderSubscription(
        id=sub_id,
        status=status,
        customer_id="cus_123",
        price_id="price_basic",
        current_period_start=PERIOD_END - timedelta(days=31),
        current_period_end=PERIOD_END,
    )


def _result(event_id, event_type, subscription=None, subscription_id=None, member_id=None, plan_id=None):
    return BillingWebhookResult(
        event_id=event_id,
        event_type=event_type,
        subscription_id=subscription_id or (subscription.id if subscription else None),
        member_id=member_id,
        plan_id=plan_id,
        subscription=subscription,
        metadata={},
    )


def _event_row(event_id):
    with get_db_session() as session:
        return session.execute(
            select(billing_events).where(billing_events.c.stripe_event_id == event_id)
        ).first()


def _subscription_rows(member_id):
    with get_db_session() as session:
        return session.execute(
            select(member_subscriptions)
            .where(member_subscriptions.c.member_id == member_id)
            .order_by(member_subscriptions.c.id)
        ).all()


def _checkout(mock_webhook_provider, member, plan, event_id="evt_checkout", sub_id="sub_123"):
    mock_webhook_provider.handle_webhook.return_value = _result(
        event_id,
        "checkout.session.completed",
        subscription=_subscription(sub_id),
        member_id=member.id,
        plan_id=plan.id,
    )
    return process_webhook_event(HEADERS, b'{"id": "%s"}' % event_id.encode())


def test_checkout_completed_activates_member(mock_webhook_provider, make_member, make_plan):
    member = make_member(status="inactive")
    plan = make_plan()

    _checkout(mock_webhook_provider, member, plan)

    rows = _subscription_rows(member.id)
    assert len(rows) == 1
    assert rows[0].status == "active"
    assert rows[0].plan_id == plan.id
    assert rows[0].stripe_subscription_id == "sub_123"
    assert get_member(member.id).status == "active"
    assert check_member_subscription(member.id).has_subscription is True


def test_checkout_supersedes_previous_active(mock_webhook_provider, make_member, make_plan, subscribe):
    member = make_member()
    old_plan = make_plan(name="Old")
    new_plan = make_plan(name="New")
    old_id = subscribe(member.id, old_plan.id, stripe_subscription_id="sub_old")

    _checkout(mock_webhook_provider, member, new_plan, sub_id="sub_new")

    rows = {row.id: row for row in _subscription_rows(member.id)}
    assert rows[old_id].status == "canceled"
    assert rows[old_id].ended_at is not None
    assert [row.plan_id for row in rows.values() if row.status == "active"] == [new_plan.id]


def test_checkout_without_metadata_changes_nothing(mock_webhook_provider, make_member):
    member = make_member(status="inactive")
    mock_webhook_provider.handle_webhook.return_value = _result(
        "evt_nometa", "checkout.session.completed", subscription=_subscription()
    )

    process_webhook_event(HEADERS, b"{}")

    assert _subscription_rows(member.id) == []
    assert get_member(member.id).status == "inactive"
    assert _event_row("evt_nometa").processed is True


def test_duplicate_event_is_not_reprocessed(mock_webhook_provider, make_member, make_plan):
    member = make_member()
    plan = make_plan()
    _checkout(mock_webhook_provider, member, plan)

    # Member cancels locally between deliveries; a replay must not reactivate
    with get_db_session() as session:
        session.execute(
            member_subscriptions.update()
            .where(member_subscriptions.c.member_id == member.id)
            .values(status="canceled")
        )

    _checkout(mock_webhook_provider, member, plan)

    assert [row.status for row in _subscription_rows(member.id)] == ["canceled"]
    with get_db_session() as session:
        count = len(session.execute(
            select(billing_events).where(billing_events.c.stripe_event_id == "evt_checkout")
        ).all())
    assert count == 1


def test_payload_hash_and_processed_flags(mock_webhook_provider, reset_db):
    body = b'{"id": "evt_hash", "type": "customer.created"}'
    mock_webhook_provider.handle_webhook.return_value = _result("evt_hash", "customer.created")

    process_webhook_event(HEADERS, body)

    event = _event_row("evt_hash")
    assert event.payload_hash == hashlib.sha256(body).hexdigest()
    assert event.event_type == "customer.created"
    assert event.processed is True
    assert event.processed_at is not None
    assert event.error is None


def test_invoice_payment_failed_marks_past_due(mock_webhook_provider, make_member, make_plan, subscribe):
    member = make_member()
    plan = make_plan()
    subscribe(member.id, plan.id, stripe_subscription_id="sub_inv")
    mock_webhook_provider.handle_webhook.return_value = _result(
        "evt_fail", "invoice.payment_failed", subscription_id="sub_inv"
    )

    process_webhook_event(HEADERS, b"{}")

    assert _subscription_rows(member.id)[0].status == "past_due"
    # past_due is not entitled
    assert check_member_subscription(member.id).has_subscription is False


def test_invoice_payment_succeeded_reactivates(mock_webhook_provider, make_member, make_plan, subscribe):
    member = make_member()
    plan = make_plan()
    subscribe(member.id, plan.id, status="past_due", stripe_subscription_id="sub_inv")
    mock_webhook_provider.handle_webhook.return_value = _result(
        "evt_paid", "invoice.payment_succeeded", subscription_id="sub_inv"
    )

    process_webhook_event(HEADERS, b"{}")

    assert _subscription_rows(member.id)[0].status == "active"


def test_invoice_for_unknown_subscription_is_noop(mock_webhook_provider, reset_db):
    mock_webhook_provider.handle_webhook.return_value = _result(
        "evt_unknown", "invoice.payment_succeeded", subscription_id="sub_missing"
    )
    process_webhook_event(HEADERS, b"{}")
    assert _event_row("evt_unknown").processed is True


def test_subscription_updated_mirrors_period(mock_webhook_provider, make_member, make_plan, subscribe):
    member = make_member()
    plan = make_plan()
    subscribe(member.id, plan.id, stripe_subscription_id="sub_upd")
    updated = ProviderSubscription(
        id="sub_upd",
        status="active",
        current_period_end=PERIOD_END,
        cancel_at_period_end=True,
    )
    mock_webhook_provider.handle_webhook.return_value = _result(
        "evt_upd", "customer.subscription.updated", subscription=updated
    )

    process_webhook_event(HEADERS, b"{}")

    row = _subscription_rows(member.id)[0]
    assert row.cancel_at_period_end is True
    assert row.current_period_end.replace(tzinfo=timezone.utc) == PERIOD_END
    assert row.plan_id == plan.id


def test_subscription_deleted_deactivates_member(mock_webhook_provider, make_member, make_plan, subscribe):
    member = make_member()
    plan = make_plan()
    subscribe(member.id, plan.id, stripe_subscription_id="sub_del")
    mock_webhook_provider.handle_webhook.return_value = _result(
        "evt_del", "customer.subscription.deleted", subscription=_subscription("sub_del", "canceled")
    )

    process_webhook_event(HEADERS, b"{}")

    row = _subscription_rows(member.id)[0]
    assert row.status == "canceled"
    assert row.ended_at is not None
    assert get_member(member.id).status == "inactive"


def test_failed_event_records_error_and_is_retried(mock_webhook_provider, make_member, make_plan, subscribe):
    member = make_member()
    plan = make_plan()
    subscribe(member.id, plan.id, stripe_subscription_id="sub_retry")
    mock_webhook_provider.handle_webhook.return_value = _result(
        "evt_retry", "invoice.payment_failed", subscription_id="sub_retry"
    )

    with patch(
        "gymdesk.features.billing.service._set_status_by_stripe_id",
        side_effect=RuntimeError("db hiccup"),
    ):
        with pytest.raises(RuntimeError):
            process_webhook_event(HEADERS, b"{}")

    event = _event_row("evt_retry")
    assert event.processed is False
    assert event.error == "db hiccup"
    assert _subscription_rows(member.id)[0].status == "active"

    # The next delivery of the same event is applied
    process_webhook_event(HEADERS, b"{}")
    event = _event_row("evt_retry")
    assert event.processed is True
    assert event.error is None
    assert _subscription_rows(member.id)[0].status == "past_due"


def test_webhook_requires_billing(reset_db):
    with pytest.raises(BillingDisabledError):
        process_webhook_event(HEADERS, b"{}")
