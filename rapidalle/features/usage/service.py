"""
rapidalle/features/usage/service.py

Usage accounting service.

Handles:
- Usage event emission (append-only)
- Usage queries by feature and time window
- Credit totals over a rolling window
"""

from datetime import datetime, timezone, timedelta
from typing import Dict, Optional, Any, List
from sqlalchemy import select, insert, func

from rapidalle.core.database import get_db_session, usage_events, as_utc
from rapidalle.features.users.service import get_or_create_user
from rapidalle.models.usage_event import UsageEvent


def emit_usage_event(
    user_id: str,
    feature: str,
    credits: int,
    metadata: Optional[Dict[str, Any]] = None,
    occurred_at: Optional[datetime] = None,
) -> UsageEvent:
    """
    Append a usage event.

    Args:
        user_id: User whose balance moved
        feature: What moved it (image.generate, billing.starter, ...)
        credits: Credits consumed (positive) or granted (negative)
        metadata: Optional metadata (run_id, stripe_event_id, ...)
        occurred_at: Timestamp of usage (defaults to now)

    Returns:
        UsageEvent instance
    """
    occurred_at = as_utc(occurred_at) or datetime.now(timezone.utc)
    # usage_events.user_id references users.id
    get_or_create_user(user_id, defaults={"credits": 0})

    with get_db_session() as session:
        session.execute(
            insert(usage_events).values(
                user_id=user_id,
                feature=feature,
                credits=int(credits),
                occurred_at=occurred_at,
                metadata=metadata,
            )
        )

    return UsageEvent(
        user_id=user_id,
        feature=feature,
        credits=int(credits),
        occurred_at=occurred_at,
        metadata=metadata,
    )


def get_usage_events(
    user_id: str,
    feature: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
) -> List[UsageEvent]:
    """
    Get usage events for a user, oldest first.

    Args:
        user_id: User to query
        feature: Optional filter by feature
        start_time: Optional start of time window (inclusive)
        end_time: Optional end of time window (inclusive)
    """
    with get_db_session() as session:
        query = select(usage_events).where(usage_events.c.user_id == user_id)

        if feature:
            query = query.where(usage_events.c.feature == feature)
        if start_time:
            query = query.where(usage_events.c.occurred_at >= as_utc(start_time))
        if end_time:
            query = query.where(usage_events.c.occurred_at <= as_utc(end_time))

        rows = session.execute(query.order_by(usage_events.c.occurred_at, usage_events.c.id)).all()

        return [
            UsageEvent(
                user_id=row.user_id,
                feature=row.feature,
                credits=row.credits,
                occurred_at=as_utc(row.occurred_at),
                metadata=row._mapping["metadata"],
            )
            for row in rows
        ]


def total_credits_used(
    user_id: str,
    feature: str = "image.generate",
    window_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """Sum credits recorded for a feature, optionally over the last N days."""
    now = as_utc(now) or datetime.now(timezone.utc)
    with get_db_session() as session:
        query = select(func.coalesce(func.sum(usage_events.c.credits), 0)).where(
            usage_events.c.user_id == user_id,
            usage_events.c.feature == feature,
        )
        if window_days is not None:
            query = query.where(usage_events.c.occurred_at >= now - timedelta(days=window_days))
        return int(session.execute(query).scalar() or 0)
