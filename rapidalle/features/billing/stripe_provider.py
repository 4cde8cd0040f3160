"""
Stripe billing provider implementation.

Implements BillingProvider using the Stripe API. The internal user id and
credit pack ride along in checkout and subscription metadata so webhook
events can be attributed without extra lookups.
"""
from typing import Dict, Any, Optional
import stripe

from rapidalle.core.config import settings
from rapidalle.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookResult,
)


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """Create Stripe customer for user."""
        try:
            customer_data: Dict[str, Any] = {
                "metadata": {"user_id": user_id}
            }
            if email:
                customer_data["email"] = email
            if name:
                customer_data["name"] = name

            customer = stripe.Customer.create(**customer_data)
            return customer.id
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer creation failed: {e}")

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        mode: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """Create Stripe checkout session."""
        params: Dict[str, Any] = {
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": mode,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata or {},
        }
        if mode == "subscription":
            # Renewal invoices carry the subscription, not the session
            params["subscription_data"] = {"metadata": metadata or {}}
        try:
            session = stripe.checkout.Session.create(**params)
            return session.url
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

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            event = stripe.Webhook.construct_event(
                body, sig_header, self.webhook_secret
            )
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        return parse_event(event)


def parse_event(event: Dict[str, Any]) -> BillingWebhookResult:
    """Parse a Stripe event into a normalized BillingWebhookResult."""
    event_type = event["type"]
    event_id = event["id"]
    data = event.get("data", {}).get("object", {}) or {}
    metadata = dict(data.get("metadata") or {})

    result = BillingWebhookResult(
        event_id=event_id,
        event_type=event_type,
        user_id=metadata.get("user_id"),
        customer_id=data.get("customer"),
        pack=metadata.get("pack"),
        metadata=metadata,
    )

    if event_type == "checkout.session.completed":
        result.subscription_id = data.get("subscription")
        result.status = data.get("payment_status")
    elif event_type.startswith("customer.subscription."):
        result.subscription_id = data.get("id")
        result.status = data.get("status")
        items = (data.get("items") or {}).get("data") or []
        if items:
            result.price_id = (items[0].get("price") or {}).get("id")
    elif event_type == "invoice.paid":
        result.subscription_id = data.get("subscription")
        result.billing_reason = data.get("billing_reason")
        lines = (data.get("lines") or {}).get("data") or []
        if lines:
            line = lines[0]
            result.price_id = (line.get("price") or {}).get("id")
            line_meta = line.get("metadata") or {}
            result.user_id = result.user_id or line_meta.get("user_id")
            result.pack = result.pack or line_meta.get("pack")

    return result
