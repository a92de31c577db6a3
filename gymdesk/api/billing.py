"""
Stripe billing routes.

- POST /api/stripe/checkout: Create checkout session (member)
- POST /api/stripe/portal: Create portal session (member)
- POST /api/stripe/sync-subscription: Pull subscription state from Stripe (member)
- POST /api/stripe/webhook: Handle Stripe webhooks (signature-verified, no session)

All routes answer 503 `billing_disabled` when STRIPE_SECRET_KEY is unset.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from gymdesk.api.deps import get_current_member
from gymdesk.core.errors import AppError, ValidationError
from gymdesk.features.billing.provider import BillingProviderError, BillingWebhookError
from gymdesk.features.billing.service import (
    process_webhook_event,
    start_checkout,
    start_portal,
    sync_subscription,
)
from gymdesk.models.member import Member


router = APIRouter(prefix="/api/stripe", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    model_config = ConfigDict(populate_by_name=True)

    plan_id: int = Field(alias="planId")
    is_annual: bool = Field(False, alias="isAnnual")
    success_url: Optional[str] = Field(None, alias="successUrl")
    cancel_url: Optional[str] = Field(None, alias="cancelUrl")


class PortalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    return_url: Optional[str] = Field(None, alias="returnUrl")


@router.post("/checkout")
def create_checkout(body: CheckoutRequest, member: Member = Depends(get_current_member)):
    """
    Create Stripe checkout session.

    Returns:
        {"session_id": "cs_...", "url": "https://checkout.stripe.com/..."}

    Errors:
        503: Billing disabled (STRIPE_SECRET_KEY not set)
        404: Plan not found or inactive
        400: Price not configured for this plan
        502: Stripe API error
    """
    try:
        return start_checkout(member, body.plan_id, body.is_annual, body.success_url, body.cancel_url)
    except BillingProviderError as e:
        raise AppError("Failed to create checkout session", status_code=502, extra={"detail": str(e)})


@router.post("/portal")
def create_portal(body: Optional[PortalRequest] = None, member: Member = Depends(get_current_member)):
    try:
        url = start_portal(member, body.return_url if body else None)
    except BillingProviderError as e:
        raise AppError("Failed to create billing portal session", status_code=502, extra={"detail": str(e)})
    return {"url": url}


@router.post("/sync-subscription")
def post_sync_subscription(member: Member = Depends(get_current_member)):
    try:
        return {"subscription": sync_subscription(member)}
    except BillingProviderError as e:
        raise AppError("Failed to sync subscription", status_code=502, extra={"detail": str(e)})


@router.post("/webhook")
async def handle_webhook(request: Request):
    """
    Handle Stripe webhook events.

    Verifies signature, processes event idempotently, and updates subscription state.
    Event deduplication uses stripe_event_id (stored in billing_events table).

    Errors:
        400: Missing/invalid signature or payload
        503: Billing disabled
    """
    # Raw body is required for signature verification
    body = await request.body()
    headers = dict(request.headers)

    try:
        result = process_webhook_event(headers, body)
    except BillingWebhookError as e:
        raise ValidationError(str(e))
    return {"received": True, "event_id": result.event_id}
