"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
Handles webhook signature verification and event parsing.
"""
import json
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
import stripe

from gymdesk.core.config import settings
from gymdesk.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookResult,
    CheckoutSession,
    ProviderSubscription,
)


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def normalize_subscription(data: Dict[str, Any]) -> ProviderSubscription:
    """
    Normalize a Stripe subscription object (plain dict).

    Newer API versions moved the billing period onto the subscription
    items; both placements are read.
    """
    items = (data.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or {}
    customer = data.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")

    return ProviderSubscription(
        id=data["id"],
        status=data.get("status") or "incomplete",
        customer_id=customer,
        price_id=price.get("id") if isinstance(price, dict) else price,
        current_period_start=_timestamp(data.get("current_period_start") or first_item.get("current_period_start")),
        current_period_end=_timestamp(data.get("current_period_end") or first_item.get("current_period_end")),
        cancel_at_period_end=bool(data.get("cancel_at_period_end", False)),
        canceled_at=_timestamp(data.get("canceled_at")),
        metadata=dict(data.get("metadata") or {}),
    )


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription_id = invoice.get("subscription")
    if isinstance(subscription_id, dict):
        return subscription_id.get("id")
    if subscription_id:
        return subscription_id
    details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
    return details.get("subscription")


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def create_customer(self, member_id: int, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """Create a Stripe customer tagged with the member and user ids."""
        customer_data: Dict[str, Any] = {
            "metadata": {"member_id": str(member_id), "user_id": user_id}
        }
        if email:
            customer_data["email"] = email
        if name:
            customer_data["name"] = name
        try:
            customer = stripe.Customer.create(**customer_data)
            return customer.id
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer creation failed: {e}")

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> CheckoutSession:
        """Create Stripe checkout session in subscription mode."""
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata or {},
                subscription_data={"metadata": metadata or {}},
            )
            return CheckoutSession(id=session.id, url=session.url)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create Stripe billing portal session."""
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}")

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription lookup failed: {e}")
        return normalize_subscription(subscription.to_dict())

    def list_subscriptions(self, customer_id: str) -> List[ProviderSubscription]:
        try:
            result = stripe.Subscription.list(customer=customer_id, status="all", limit=10)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription listing failed: {e}")
        return [normalize_subscription(item.to_dict()) for item in result.data]

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("No signature")

        try:
            stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError:
            raise BillingWebhookError("Invalid signature")

        # Signature verified; work from the raw JSON as plain dicts
        return self._parse_event(json.loads(body))

    def _parse_event(self, event: Dict[str, Any]) -> BillingWebhookResult:
        """Parse Stripe event into normalized BillingWebhookResult."""
        event_type = event["type"]
        event_id = event["id"]
        data = (event.get("data") or {}).get("object") or {}
        metadata: Dict[str, Any] = dict(data.get("metadata") or {})

        subscription_id = None
        subscription = None

        if event_type.startswith("customer.subscription."):
            subscription = normalize_subscription(data)
            subscription_id = subscription.id

        elif event_type == "checkout.session.completed":
            subscription_id = data.get("subscription")
            if isinstance(subscription_id, dict):
                subscription_id = subscription_id.get("id")
            if subscription_id:
                subscription = self.retrieve_subscription(subscription_id)
                # Checkout metadata wins; subscription metadata fills the gaps
                metadata = {**subscription.metadata, **metadata}

        elif event_type.startswith("invoice."):
            subscription_id = _invoice_subscription_id(data)

        return BillingWebhookResult(
            event_id=event_id,
            event_type=event_type,
            subscription_id=subscription_id,
            member_id=_int_or_none(metadata.get("member_id")),
            plan_id=_int_or_none(metadata.get("plan_id")),
            subscription=subscription,
            metadata=metadata,
        )
