"""
Billing provider protocol.

Defines the interface for billing providers (Stripe, etc.) so the credit
grant logic does not depend on a vendor SDK.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field


@dataclass
class BillingWebhookResult:
    """Normalized billing webhook event."""
    event_id: str
    event_type: str
    user_id: Optional[str] = None
    customer_id: Optional[str] = None
    pack: Optional[str] = None
    price_id: Optional[str] = None
    subscription_id: Optional[str] = None
    status: Optional[str] = None  # active, canceled, past_due, etc.
    billing_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer creation
    - Checkout session creation (one-time packs and subscriptions)
    - Portal session creation
    - Webhook signature verification and parsing
    """

    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """Return the provider customer id for the user, creating it if needed."""
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        mode: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Create a checkout session.

        Args:
            customer_id: Provider customer ID
            price_id: Provider price ID
            mode: "payment" for credit packs, "subscription" for monthly plans
            success_url: URL to redirect on success
            cancel_url: URL to redirect on cancellation
            metadata: Optional metadata to attach

        Returns:
            Checkout session URL
        """
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a billing portal session and return its URL."""
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
