"""
Billing API routes.

- POST /api/billing/checkout: Create checkout session for a credit pack
- POST /api/billing/portal: Create portal session
- POST /api/billing/webhook: Handle Stripe webhooks
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from rapidalle.core.auth import get_current_user_id
from rapidalle.core.errors import NotFoundError, ProviderError, ValidationError
from rapidalle.features.billing.provider import BillingProvider, BillingProviderError, BillingWebhookError
from rapidalle.features.billing.service import (
    get_provider,
    process_webhook_event,
    start_checkout,
    start_portal,
)


router = APIRouter(prefix="/api/billing", tags=["billing"])


def get_billing_provider() -> BillingProvider:
    """Raises BillingDisabledError (503) when Stripe is not configured."""
    return get_provider()


class CheckoutRequest(BaseModel):
    pack: str
    success_url: Optional[str] = Field(None, alias="successUrl")
    cancel_url: Optional[str] = Field(None, alias="cancelUrl")


class PortalRequest(BaseModel):
    return_url: Optional[str] = Field(None, alias="returnUrl")


class UrlResponse(BaseModel):
    url: str


@router.post("/checkout", response_model=UrlResponse)
async def create_checkout(
    request: CheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    provider: BillingProvider = Depends(get_billing_provider),
):
    """
    Create Stripe checkout session.

    Returns:
        {"url": "https://checkout.stripe.com/..."}

    Errors:
        503: Billing disabled (STRIPE_SECRET_KEY not set)
        400: Unknown pack
        502: Stripe API error
    """
    try:
        url = start_checkout(
            user_id=user_id,
            pack_key=request.pack,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
            provider=provider,
        )
    except BillingProviderError as e:
        raise ProviderError(str(e))
    return {"url": url}


@router.post("/portal", response_model=UrlResponse)
async def create_portal(
    request: Optional[PortalRequest] = None,
    user_id: str = Depends(get_current_user_id),
    provider: BillingProvider = Depends(get_billing_provider),
):
    """
    Create Stripe billing portal session.

    Errors:
        503: Billing disabled
        404: Customer not found (user never checked out)
        502: Stripe API error
    """
    return_url = request.return_url if request else None
    try:
        url = start_portal(user_id=user_id, return_url=return_url, provider=provider)
    except BillingProviderError as e:
        raise ProviderError(str(e))
    if not url:
        raise NotFoundError("Customer not found. Complete checkout first.")
    return {"url": url}


@router.post("/webhook")
async def handle_webhook(request: Request, provider: BillingProvider = Depends(get_billing_provider)):
    """
    Handle Stripe webhook events.

    Verifies the signature, then processes the event idempotently.
    Deduplication uses stripe_event_id (stored in billing_events table).

    Returns:
        {"received": true, "event_id": ...}
    """
    # Raw body is required for signature verification
    body = await request.body()
    headers = dict(request.headers)

    try:
        result = process_webhook_event(headers, body, provider=provider)
    except BillingWebhookError as e:
        raise ValidationError(str(e), details={"field": "stripe-signature"})
    return {"received": True, "event_id": result.event_id}
