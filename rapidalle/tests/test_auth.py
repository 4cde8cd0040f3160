import time

import jwt
import pytest

from rapidalle.core.auth import verify_session_jwt
from rapidalle.core.config import settings
from rapidalle.core.errors import UnauthorizedError
from rapidalle.features.users.service import get_user

SECRET = "session-test-secret-0123456789abcdef"


def _token(sub="jwt-user", secret=SECRET, exp_delta=300):
    now = int(time.time())
    return jwt.encode({"sub": sub, "iat": now, "exp": now + exp_delta}, secret, algorithm="HS256")


def test_verify_session_jwt_returns_subject():
    assert verify_session_jwt(_token(), SECRET) == "jwt-user"


@pytest.mark.parametrize(
    "token",
    [
        _token(secret="wrong-secret-0123456789abcdef-xyz"),
        _token(exp_delta=-10),
        "not-a-jwt",
    ],
)
def test_verify_session_jwt_rejects_bad_tokens(token):
    with pytest.raises(UnauthorizedError):
        verify_session_jwt(token, SECRET)


def test_verify_session_jwt_needs_a_secret(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", None)
    with pytest.raises(UnauthorizedError):
        verify_session_jwt(_token())


def test_bearer_session_authenticates_and_provisions(client, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", SECRET)

    resp = client.get("/api/credits", headers={"Authorization": f"Bearer {_token('jwt-new')}"})

    assert resp.status_code == 200
    assert get_user("jwt-new").credits == settings.INITIAL_CREDITS


def test_invalid_bearer_is_401_even_with_user_header(client, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", SECRET)
    resp = client.get(
        "/api/credits",
        headers={"Authorization": "Bearer garbage", "X-User-Id": "someone"},
    )
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_REQUIRED"


def test_user_header_ignored_in_production(client, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "production")
    resp = client.get("/api/credits", headers={"X-User-Id": "header-user"})
    assert resp.status_code == 401


def test_user_header_can_be_disabled(client, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_ALLOW_USER_HEADER", False)
    assert client.get("/api/credits", headers={"X-User-Id": "header-user"}).status_code == 401
