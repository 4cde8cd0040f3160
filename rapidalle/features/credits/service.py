"""
Credit ledger.

Balance changes are guarded in SQL: try_debit and credit are single
UPDATE ... RETURNING statements, and debit is a compare-and-set on the
balance it read, retried when another writer got there first. Balances never
go below zero. Each movement appends a usage event, in the same transaction,
recording the credits that actually moved.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import insert, select, update

from rapidalle.core.database import get_db_session, usage_events, users
from rapidalle.features.users.service import get_or_create_user

logger = logging.getLogger("rapidalle")

GENERATE_FEATURE = "image.generate"


def _record_usage(session, user_id: str, feature: str, credits: int, metadata: Optional[Dict[str, Any]]) -> None:
    session.execute(
        insert(usage_events).values(
            user_id=user_id,
            feature=feature,
            credits=credits,
            occurred_at=datetime.now(timezone.utc),
            metadata=metadata,
        )
    )


def get_balance(user_id: str) -> int:
    """Current balance; provisions the user with INITIAL_CREDITS if absent."""
    with get_db_session() as session:
        row = session.execute(select(users.c.credits).where(users.c.id == user_id)).first()
    if row is not None:
        return int(row[0])
    return get_or_create_user(user_id).credits


def debit(
    user_id: str,
    amount: int,
    *,
    feature: str = GENERATE_FEATURE,
    metadata: Optional[Dict[str, Any]] = None,
) -> int:
    """Subtract ``amount`` clamped at zero and return the new balance.

    Only the credits actually taken are recorded; a debit against an empty
    balance records nothing.
    """
    if amount <= 0:
        return get_balance(user_id)
    get_or_create_user(user_id)

    while True:
        with get_db_session() as session:
            current = session.execute(select(users.c.credits).where(users.c.id == user_id)).scalar_one()
            taken = min(amount, current)
            if taken <= 0:
                return int(current)

            new_balance = session.execute(
                update(users)
                .where(users.c.id == user_id, users.c.credits == current)
                .values(credits=current - taken, updated_at=datetime.now(timezone.utc))
                .returning(users.c.credits)
            ).scalar_one_or_none()
            if new_balance is None:
                # balance moved since the read
                continue
            _record_usage(session, user_id, feature, taken, metadata)
        break

    logger.info("credits.debit", extra={"user_id": user_id, "event_type": "credits.debit"})
    return int(new_balance)


def try_debit(
    user_id: str,
    amount: int,
    *,
    feature: str = GENERATE_FEATURE,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[int]:
    """Compare-and-decrement. Returns the new balance, or None if short."""
    if amount <= 0:
        return get_balance(user_id)
    get_or_create_user(user_id)

    with get_db_session() as session:
        new_balance = session.execute(
            update(users)
            .where(users.c.id == user_id, users.c.credits >= amount)
            .values(
                credits=users.c.credits - amount,
                updated_at=datetime.now(timezone.utc),
            )
            .returning(users.c.credits)
        ).scalar_one_or_none()
        if new_balance is None:
            return None
        _record_usage(session, user_id, feature, amount, metadata)

    logger.info("credits.debit", extra={"user_id": user_id, "event_type": "credits.debit"})
    return int(new_balance)


def credit(
    user_id: str,
    amount: int,
    *,
    feature: str = "billing.credit",
    metadata: Optional[Dict[str, Any]] = None,
) -> int:
    """Add ``amount`` and return the new balance."""
    if amount <= 0:
        return get_balance(user_id)
    get_or_create_user(user_id)

    with get_db_session() as session:
        new_balance = session.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(
                credits=users.c.credits + amount,
                updated_at=datetime.now(timezone.utc),
            )
            .returning(users.c.credits)
        ).scalar_one()
        # Grants are stored as negative usage
        _record_usage(session, user_id, feature, -amount, metadata)

    logger.info("credits.credit", extra={"user_id": user_id, "event_type": "credits.credit"})
    return int(new_balance)


def set_balance(user_id: str, amount: float) -> int:
    """Administrative set; clamped at zero and floored to an integer."""
    target = max(0, int(amount // 1))
    get_or_create_user(user_id)

    with get_db_session() as session:
        new_balance = session.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(credits=target, updated_at=datetime.now(timezone.utc))
            .returning(users.c.credits)
        ).scalar_one()
        _record_usage(session, user_id, "admin.set_balance", 0, {"balance": target})

    return int(new_balance)


def reset_credits(user_id: str) -> int:
    return set_balance(user_id, 0)


def get_credit_summary(user_id: str) -> Dict[str, Any]:
    """Balance plus plan info for the billing page."""
    user = get_or_create_user(user_id)
    tier = user.subscription_tier or "free"
    return {
        "credits": user.credits,
        "tier": tier,
        "subscription": tier != "free",
    }
