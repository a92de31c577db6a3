"""
Billing provider protocol.

Defines the interface for billing providers (Stripe, etc.).
This allows swapping providers without changing business logic.
"""
from typing import Protocol, Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class ProviderSubscription:
    """Provider subscription state, normalized."""
    id: str
    status: str  # active, trialing, past_due, canceled, ...
    customer_id: Optional[str] = None
    price_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CheckoutSession:
    id: str
    url: Optional[str]


@dataclass
class BillingWebhookResult:
    """Result of verifying and parsing a billing webhook."""
    event_id: str
    event_type: str
    subscription_id: Optional[str]
    member_id: Optional[int]
    plan_id: Optional[int]
    subscription: Optional[ProviderSubscription]
    metadata: Dict[str, Any]


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer creation
    - Checkout and portal session creation
    - Subscription lookup
    - Webhook signature verification and parsing
    """

    def create_customer(self, member_id: int, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """
        Create a billing customer for a member.

        Returns:
            Provider customer ID (e.g., Stripe customer ID)

        Raises:
            BillingProviderError: If customer creation fails
        """
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> CheckoutSession:
        """
        Create a subscription checkout session.

        `metadata` is attached to the resulting subscription so webhook
        events can be routed back to the member and plan.

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a billing portal session for customer self-service.

        Returns:
            Portal session URL
        """
        ...

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        ...

    def list_subscriptions(self, customer_id: str) -> List[ProviderSubscription]:
        """Most recent subscriptions of the customer, any status."""
        ...

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """
        Verify webhook signature and parse event.

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook processing errors."""
    pass
