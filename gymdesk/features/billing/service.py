"""
Billing service orchestrator.

Business logic that coordinates:
- Stripe customer management for members
- Checkout and portal sessions
- Webhook processing (idempotent per provider event id)
- Subscription synchronization

All Stripe-specific code is in stripe_provider.py.
"""
import hashlib
import logging
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from sqlalchemy import select, insert, update, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gymdesk.core.config import settings
from gymdesk.core.database import (
    get_db_session,
    members,
    member_subscriptions,
    billing_events,
)
from gymdesk.core.errors import BillingDisabledError, NotFoundError, ValidationError
from gymdesk.core.logging import log_event
from gymdesk.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingWebhookResult,
    ProviderSubscription,
)
from gymdesk.features.billing.stripe_provider import StripeProvider
from gymdesk.features.members.service import set_member_status, set_stripe_customer
from gymdesk.features.plans.service import get_plan, get_plan_by_price_id
from gymdesk.models.member import Member
from gymdesk.models.subscription import MemberSubscription


logger = logging.getLogger("gymdesk.billing")

SYNCABLE_STATUSES = ("active", "trialing")


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return StripeProvider()
    except BillingProviderError:
        return None


def require_provider() -> BillingProvider:
    provider = get_provider()
    if not provider:
        raise BillingDisabledError("Billing disabled. Stripe is not configured.")
    return provider


def ensure_customer_for_member(member: Member, provider: BillingProvider) -> str:
    """Return the member's Stripe customer id, creating the customer on first use."""
    if member.stripe_customer_id:
        return member.stripe_customer_id

    customer_id = provider.create_customer(member.id, member.user_id, member.email, member.full_name)
    set_stripe_customer(member.id, customer_id)
    logger.info("billing.customer_created", extra={"member_id": member.id})
    return customer_id


def start_checkout(
    member: Member,
    plan_id: int,
    is_annual: bool = False,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Start a subscription checkout for a member.

    Returns:
        {"session_id": ..., "url": ...}

    Raises:
        BillingDisabledError: Stripe not configured (503)
        NotFoundError: plan missing or inactive (404)
        ValidationError: plan has no price for the chosen cadence (400)
        BillingProviderError: Stripe API failure
    """
    provider = require_provider()

    plan = get_plan(plan_id)
    if not plan or not plan.is_active:
        raise NotFoundError("Plan not found or inactive")

    price_id = plan.stripe_annual_price_id if is_annual and plan.stripe_annual_price_id else plan.stripe_price_id
    if not price_id:
        raise ValidationError("Price not configured for this plan")

    customer_id = ensure_customer_for_member(member, provider)
    base_url = settings.APP_URL.rstrip("/")
    session = provider.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        success_url=success_url or f"{base_url}/member/subscription?success=true",
        cancel_url=cancel_url or f"{base_url}/member/subscription?canceled=true",
        metadata={
            "member_id": str(member.id),
            "user_id": member.user_id,
            "plan_id": str(plan.id),
        },
    )
    logger.info(
        "billing.checkout_started",
        extra={"member_id": member.id, "plan_id": plan.id, "is_annual": is_annual},
    )
    return {"session_id": session.id, "url": session.url}


def start_portal(member: Member, return_url: Optional[str] = None) -> str:
    """
    Start a billing portal session for customer self-service.

    Raises:
        BillingDisabledError: Stripe not configured (503)
        ValidationError: member never went through checkout (400)
    """
    provider = require_provider()
    if not member.stripe_customer_id:
        raise ValidationError("Stripe customer not found")

    return provider.create_portal_session(
        customer_id=member.stripe_customer_id,
        return_url=return_url or f"{settings.APP_URL.rstrip('/')}/member/subscription",
    )


def _supersede_active(session: Session, member_id: int, keep_id: Optional[int], now: datetime) -> int:
    """Cancel the member's other active subscriptions so only one stays active."""
    conditions = [
        member_subscriptions.c.member_id == member_id,
        member_subscriptions.c.status == "active",
    ]
    if keep_id is not None:
        conditions.append(member_subscriptions.c.id != keep_id)
    result = session.execute(
        update(member_subscriptions)
        .where(and_(*conditions))
        .values(status="canceled", ended_at=now, updated_at=now)
    )
    if result.rowcount:
        logger.info("billing.subscription_superseded", extra={"member_id": member_id, "count": result.rowcount})
    return result.rowcount


def _find_subscription_row(session: Session, stripe_subscription_id: str):
    return session.execute(
        select(member_subscriptions)
        .where(member_subscriptions.c.stripe_subscription_id == stripe_subscription_id)
        .with_for_update()
    ).first()


def _upsert_subscription(
    session: Session,
    member_id: int,
    plan_id: Optional[int],
    subscription: ProviderSubscription,
    now: datetime,
) -> int:
    """Create or update the row mirroring a provider subscription. Returns the row id."""
    existing = _find_subscription_row(session, subscription.id)
    if subscription.status == "active":
        _supersede_active(session, member_id, existing.id if existing else None, now)

    values = dict(
        status=subscription.status,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        cancel_at_period_end=subscription.cancel_at_period_end,
        canceled_at=subscription.canceled_at,
        updated_at=now,
    )
    if existing:
        if plan_id is not None:
            values["plan_id"] = plan_id
        session.execute(
            update(member_subscriptions).where(member_subscriptions.c.id == existing.id).values(**values)
        )
        return existing.id

    result = session.execute(
        insert(member_subscriptions).values(
            member_id=member_id,
            plan_id=plan_id,
            stripe_subscription_id=subscription.id,
            created_at=now,
            **values,
        )
    )
    return result.inserted_primary_key[0]


def _set_status_by_stripe_id(session: Session, stripe_subscription_id: Optional[str], status: str, now: datetime) -> bool:
    if not stripe_subscription_id:
        return False
    row = _find_subscription_row(session, stripe_subscription_id)
    if not row:
        logger.warning("billing.subscription_unknown", extra={"stripe_subscription_id": stripe_subscription_id})
        return False
    if status == "active":
        _supersede_active(session, row.member_id, row.id, now)
    session.execute(
        update(member_subscriptions)
        .where(member_subscriptions.c.id == row.id)
        .values(status=status, updated_at=now)
    )
    return True


def _handle_checkout_completed(session: Session, result: BillingWebhookResult, now: datetime) -> None:
    if not result.member_id or not result.plan_id or not result.subscription:
        logger.error("billing.checkout_missing_metadata", extra={"event_id": result.event_id})
        return
    _upsert_subscription(session, result.member_id, result.plan_id, result.subscription, now)
    set_member_status(result.member_id, "active", session=session)
    logger.info("billing.checkout_completed", extra={"member_id": result.member_id, "plan_id": result.plan_id})


def _handle_subscription_updated(session: Session, result: BillingWebhookResult, now: datetime) -> None:
    subscription = result.subscription
    row = _find_subscription_row(session, subscription.id) if subscription else None
    if not row:
        logger.warning("billing.subscription_unknown", extra={"stripe_subscription_id": result.subscription_id})
        return
    _upsert_subscription(session, row.member_id, None, subscription, now)


def _handle_subscription_deleted(session: Session, result: BillingWebhookResult, now: datetime) -> None:
    row = _find_subscription_row(session, result.subscription_id) if result.subscription_id else None
    if not row:
        logger.warning("billing.subscription_unknown", extra={"stripe_subscription_id": result.subscription_id})
        return
    session.execute(
        update(member_subscriptions)
        .where(member_subscriptions.c.id == row.id)
        .values(status="canceled", ended_at=now, updated_at=now)
    )
    set_member_status(row.member_id, "inactive", session=session)


def apply_webhook_result(session: Session, result: BillingWebhookResult, now: Optional[datetime] = None) -> bool:
    """
    Apply a parsed webhook to local state. Returns False for ignored event types.
    """
    current = now or datetime.now(timezone.utc)
    event_type = result.event_type
    if event_type == "checkout.session.completed":
        _handle_checkout_completed(session, result, current)
    elif event_type == "invoice.payment_succeeded":
        _set_status_by_stripe_id(session, result.subscription_id, "active", current)
    elif event_type == "invoice.payment_failed":
        _set_status_by_stripe_id(session, result.subscription_id, "past_due", current)
    elif event_type == "customer.subscription.updated":
        _handle_subscription_updated(session, result, current)
    elif event_type == "customer.subscription.deleted":
        _handle_subscription_deleted(session, result, current)
    else:
        logger.info("billing.event_ignored", extra={"event_type": event_type})
        return False
    return True


def _record_event(result: BillingWebhookResult, payload_hash: str) -> bool:
    """
    Record the event in the ledger. Returns False when it was already processed.
    """
    with get_db_session() as session:
        existing = session.execute(
            select(billing_events.c.processed).where(billing_events.c.stripe_event_id == result.event_id)
        ).first()
        if existing:
            # A failed attempt is retried; a processed one is not
            return not existing.processed

    try:
        with get_db_session() as session:
            session.execute(
                insert(billing_events).values(
                    stripe_event_id=result.event_id,
                    event_type=result.event_type,
                    payload_hash=payload_hash,
                    processed=False,
                    received_at=datetime.now(timezone.utc),
                )
            )
    except IntegrityError:
        # Race condition: another delivery already recorded this event
        return False
    return True


def process_webhook_event(headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
    """
    Process billing webhook event (idempotent).

    1. Verify signature and parse
    2. Check idempotency (skip if already processed)
    3. Apply state changes
    4. Mark as processed

    Raises:
        BillingDisabledError: Stripe not configured
        BillingWebhookError: If signature invalid or parsing fails
    """
    provider = require_provider()
    result = provider.handle_webhook(headers, body)
    payload_hash = hashlib.sha256(body).hexdigest()

    if not _record_event(result, payload_hash):
        logger.info("billing.event_duplicate", extra={"event_id": result.event_id, "event_type": result.event_type})
        return result

    try:
        now = datetime.now(timezone.utc)
        with get_db_session() as session:
            apply_webhook_result(session, result, now)
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == result.event_id)
                .values(processed=True, processed_at=now, error=None)
            )
    except Exception as e:
        with get_db_session() as session:
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == result.event_id)
                .values(error=str(e)[:500])
            )
        logger.error(
            "billing.event_failed",
            exc_info=e,
            extra={"event_id": result.event_id, "event_type": result.event_type},
        )
        raise

    log_event("info", "billing.event_processed", event_type=result.event_type, extra={"event_id": result.event_id})
    return result


def sync_subscription(member: Member) -> Optional[Dict[str, Any]]:
    """
    Pull the member's subscriptions from Stripe and mirror the first live one.

    Returns:
        The mirrored subscription (with its plan), or None when the member
        has no Stripe customer or no active/trialing subscription.
    """
    provider = require_provider()
    if not member.stripe_customer_id:
        return None

    live = next(
        (sub for sub in provider.list_subscriptions(member.stripe_customer_id) if sub.status in SYNCABLE_STATUSES),
        None,
    )
    if live is None:
        return None

    plan = get_plan_by_price_id(live.price_id) if live.price_id else None
    now = datetime.now(timezone.utc)
    with get_db_session() as session:
        session.execute(select(members.c.id).where(members.c.id == member.id).with_for_update())
        row_id = _upsert_subscription(session, member.id, plan.id if plan else None, live, now)
        set_member_status(member.id, "active", session=session)

    logger.info(
        "billing.subscription_synced",
        extra={"member_id": member.id, "status": live.status, "plan_id": plan.id if plan else None},
    )
    subscription = MemberSubscription(
        id=row_id,
        member_id=member.id,
        plan_id=plan.id if plan else None,
        stripe_subscription_id=live.id,
        status=live.status,
        current_period_start=live.current_period_start,
        current_period_end=live.current_period_end,
        cancel_at_period_end=live.cancel_at_period_end,
        canceled_at=live.canceled_at,
    )
    return {**subscription.model_dump(), "plan": plan}
