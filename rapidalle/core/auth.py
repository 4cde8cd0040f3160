"""
Auth boundary for the RapiDall-E API.

Sessions are issued by the external auth provider as HS256 JWTs; this
module only verifies them and extracts the user id. Outside production the
X-User-Id header is accepted as well (local dev, tests).
"""
from fastapi import Header, Request
from typing import Optional
from rapidalle.core.config import settings
from rapidalle.core.errors import UnauthorizedError
import jwt
import logging

logger = logging.getLogger("rapidalle")


def verify_session_jwt(token: str, secret: Optional[str] = None) -> str:
    """
    Verify a session JWT and extract user_id from the 'sub' claim.

    Raises:
        UnauthorizedError: Invalid, expired or unverifiable token
    """
    key = secret or settings.AUTH_JWT_SECRET
    if not key:
        raise UnauthorizedError("Bearer authentication is not configured")

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthorizedError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Token has no subject")
    return str(user_id)


def user_header_allowed() -> bool:
    return bool(settings.AUTH_ALLOW_USER_HEADER) and settings.ENV.lower() != "production"


def _provision(user_id: str) -> None:
    try:
        from rapidalle.features.users.service import get_or_create_user
        get_or_create_user(user_id)
    except Exception as e:
        # Don't block auth if the upsert fails; the ledger provisions again on read
        logger.warning(f"Failed to upsert user {user_id}: {e}")


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Dev/test user ID"),
) -> str:
    """
    Extract current user ID from request context.

    Priority:
    1. Bearer JWT from Authorization header
    2. X-User-Id header (when allowed)
    3. Raise 401 AUTH_REQUIRED

    After successful auth, the user is provisioned lazily.
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user_id = verify_session_jwt(auth_header[7:])
        _provision(user_id)
        return user_id

    if x_user_id and user_header_allowed():
        _provision(x_user_id)
        return x_user_id

    raise UnauthorizedError("Missing Authorization (Bearer JWT) or X-User-Id header")
