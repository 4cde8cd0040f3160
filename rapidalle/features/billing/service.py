"""
Billing service orchestrator.

Coordinates:
- Customer management
- Credit-pack and subscription checkout
- Webhook processing (idempotent on the Stripe event id)
- Subscription tier synchronization

All Stripe-specific code is in stripe_provider.py.
"""
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from rapidalle.core.config import settings
from rapidalle.core.database import get_db_session, billing_events
from rapidalle.core.errors import BillingDisabledError, ValidationError
from rapidalle.features.billing.provider import BillingProvider, BillingWebhookResult
from rapidalle.features.billing.stripe_provider import StripeProvider
from rapidalle.features.credits import service as credits_service
from rapidalle.features.users.service import get_or_create_user, get_user_by_customer_id, update_user

logger = logging.getLogger("rapidalle")


@dataclass(frozen=True)
class CreditPack:
    key: str
    credits: int
    mode: str  # "payment" or "subscription"
    price_setting: str

    @property
    def price_id(self) -> Optional[str]:
        return getattr(settings, self.price_setting, None)


CREDIT_PACKS: Dict[str, CreditPack] = {
    "starter": CreditPack("starter", 50, "payment", "STRIPE_PRICE_STARTER"),
    "power": CreditPack("power", 200, "payment", "STRIPE_PRICE_POWER"),
    "pro": CreditPack("pro", 500, "subscription", "STRIPE_PRICE_PRO"),
}


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> BillingProvider:
    """Get billing provider; raises BillingDisabledError when Stripe is not configured."""
    if not billing_enabled():
        raise BillingDisabledError("Billing is not configured")
    return StripeProvider()


def pack_for_price(price_id: Optional[str]) -> Optional[CreditPack]:
    if not price_id:
        return None
    for pack in CREDIT_PACKS.values():
        if pack.price_id and pack.price_id == price_id:
            return pack
    return None


def ensure_customer_for_user(user_id: str, provider: Optional[BillingProvider] = None) -> str:
    """
    Ensure a billing customer exists for the user.

    Returns:
        Stripe customer ID

    Raises:
        BillingProviderError: If customer creation fails
    """
    user = get_or_create_user(user_id)
    if user.billing_customer_id:
        return user.billing_customer_id

    provider = provider or get_provider()
    customer_id = provider.ensure_customer(user_id, user.email, user.name)
    update_user(user_id, billing_customer_id=customer_id)
    return customer_id


def start_checkout(
    user_id: str,
    pack_key: str,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
    provider: Optional[BillingProvider] = None,
) -> str:
    """
    Start checkout for a credit pack or the pro subscription.

    Raises:
        ValidationError: Unknown pack or no Stripe price configured
        BillingProviderError: If checkout creation fails
    """
    pack = CREDIT_PACKS.get(pack_key)
    if pack is None:
        raise ValidationError(f"Unknown credit pack: {pack_key}", details={"field": "pack"})
    if not pack.price_id:
        raise ValidationError(f"No Stripe price configured for pack: {pack_key}", details={"field": "pack"})

    provider = provider or get_provider()
    customer_id = ensure_customer_for_user(user_id, provider)
    base = settings.FRONTEND_URL.rstrip("/")

    return provider.create_checkout_session(
        customer_id=customer_id,
        price_id=pack.price_id,
        mode=pack.mode,
        success_url=success_url or f"{base}/billing/success?user={user_id}",
        cancel_url=cancel_url or f"{base}/billing",
        metadata={"user_id": user_id, "pack": pack.key},
    )


def start_portal(user_id: str, return_url: Optional[str] = None, provider: Optional[BillingProvider] = None) -> Optional[str]:
    """Portal URL, or None if the user never checked out."""
    provider = provider or get_provider()
    user = get_or_create_user(user_id)
    if not user.billing_customer_id:
        return None
    return provider.create_portal_session(
        customer_id=user.billing_customer_id,
        return_url=return_url or f"{settings.FRONTEND_URL.rstrip('/')}/billing",
    )


def _resolve_user_id(result: BillingWebhookResult) -> Optional[str]:
    if result.user_id:
        return result.user_id
    if result.customer_id:
        user = get_user_by_customer_id(result.customer_id)
        if user:
            return user.id
    return None


def _resolve_pack(result: BillingWebhookResult) -> Optional[CreditPack]:
    if result.pack and result.pack in CREDIT_PACKS:
        return CREDIT_PACKS[result.pack]
    return pack_for_price(result.price_id)


def apply_billing_event(result: BillingWebhookResult) -> Optional[int]:
    """Apply a verified event. Returns the new balance when credits were granted."""
    user_id = _resolve_user_id(result)
    if not user_id:
        logger.warning("billing.unattributed_event", extra={"event_type": result.event_type})
        return None

    pack = _resolve_pack(result)
    grant_meta = {"stripe_event_id": result.event_id}

    if result.event_type == "checkout.session.completed":
        if pack is None:
            return None
        if result.customer_id:
            update_user(user_id, billing_customer_id=result.customer_id)
        if pack.mode == "subscription":
            update_user(user_id, subscription_tier=pack.key)
        return credits_service.credit(user_id, pack.credits, feature=f"billing.{pack.key}", metadata=grant_meta)

    if result.event_type == "invoice.paid":
        # The first invoice is covered by checkout.session.completed
        if result.billing_reason != "subscription_cycle" or pack is None:
            return None
        return credits_service.credit(user_id, pack.credits, feature=f"billing.{pack.key}.renewal", metadata=grant_meta)

    if result.event_type == "customer.subscription.updated":
        tier = pack.key if pack and result.status in ("active", "trialing") else "free"
        update_user(user_id, subscription_tier=tier)
        return None

    if result.event_type == "customer.subscription.deleted":
        update_user(user_id, subscription_tier="free")
        return None

    return None


def process_webhook_event(
    headers: Dict[str, str],
    body: bytes,
    provider: Optional[BillingProvider] = None,
) -> BillingWebhookResult:
    """
    Process billing webhook event (idempotent).

    1. Verify signature
    2. Check idempotency (skip if already processed; a redelivery of an
       event whose earlier attempt failed is applied again)
    3. Apply credit grants / tier changes
    4. Mark as processed

    Raises:
        BillingWebhookError: If signature invalid
    """
    provider = provider or get_provider()
    result = provider.handle_webhook(headers, body)
    payload_hash = hashlib.sha256(body).hexdigest()

    try:
        with get_db_session() as session:
            existing = session.execute(
                select(billing_events.c.processed).where(
                    billing_events.c.stripe_event_id == result.event_id
                )
            ).fetchone()
            if existing is not None and existing.processed:
                return result

            if existing is None:
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
        # Another delivery of the same event won the insert
        return result

    try:
        apply_billing_event(result)
        with get_db_session() as session:
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == result.event_id)
                .values(processed=True, processed_at=datetime.now(timezone.utc), error=None)
            )
    except Exception as e:
        with get_db_session() as session:
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == result.event_id)
                .values(error=str(e))
            )
        raise

    return result

