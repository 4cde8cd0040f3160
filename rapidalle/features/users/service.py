"""
User domain service.
- get_or_create_user(user_id)
- get_user(user_id) / list_users()
- create_user() / update_user()
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from rapidalle.core.config import settings
from rapidalle.core.database import get_db_session, users, as_utc
from rapidalle.models.user import User


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        credits=row.credits,
        subscription_tier=row.subscription_tier,
        billing_customer_id=row.billing_customer_id,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.id == user_id)).first()
        if not row:
            return None
        return _row_to_user(row)


def get_user_by_customer_id(customer_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.billing_customer_id == customer_id)).first()
        return _row_to_user(row) if row else None


def list_users(limit: int = 100, offset: int = 0) -> List[User]:
    with get_db_session() as session:
        rows = session.execute(
            select(users).order_by(users.c.created_at, users.c.id).limit(limit).offset(offset)
        ).all()
        return [_row_to_user(row) for row in rows]


def create_user(
    user_id: str,
    name: Optional[str] = None,
    email: Optional[str] = None,
    credits: Optional[int] = None,
) -> User:
    """Insert a new user. Raises IntegrityError if the id already exists."""
    now = datetime.now(timezone.utc)
    initial = settings.INITIAL_CREDITS if credits is None else max(0, int(credits))
    with get_db_session() as session:
        session.execute(
            insert(users).values(
                id=user_id,
                name=name or User.default_name(user_id),
                email=email or User.default_email(user_id),
                credits=initial,
                created_at=now,
                updated_at=now,
            )
        )
    return User(
        id=user_id,
        name=name or User.default_name(user_id),
        email=email or User.default_email(user_id),
        credits=initial,
        created_at=now,
        updated_at=now,
    )


def get_or_create_user(user_id: str, defaults: Optional[Dict[str, Any]] = None) -> User:
    existing = get_user(user_id)
    if existing:
        return existing

    defaults = defaults or {}
    try:
        return create_user(
            user_id,
            name=defaults.get("name"),
            email=defaults.get("email"),
            credits=defaults.get("credits"),
        )
    except IntegrityError:
        # Another request provisioned the same user first
        winner = get_user(user_id)
        if winner is None:
            raise
        return winner


def update_user(
    user_id: str,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
    credits: Optional[int] = None,
    subscription_tier: Optional[str] = None,
    billing_customer_id: Optional[str] = None,
) -> Optional[User]:
    values: Dict[str, Any] = {}
    if name is not None:
        values["name"] = name
    if email is not None:
        values["email"] = email
    if credits is not None:
        values["credits"] = max(0, int(credits))
    if subscription_tier is not None:
        values["subscription_tier"] = subscription_tier or None
    if billing_customer_id is not None:
        values["billing_customer_id"] = billing_customer_id
    if not values:
        return get_user(user_id)

    values["updated_at"] = datetime.now(timezone.utc)
    with get_db_session() as session:
        result = session.execute(update(users).where(users.c.id == user_id).values(**values))
        if result.rowcount == 0:
            return None
    return get_user(user_id)
