"""Session JWT verification."""
import time

import jwt
import pytest

from voicepost.core.auth import verify_session_jwt
from voicepost.core.config import Settings, settings
from voicepost.core.errors import AuthenticationError

SECRET = "test-jwt-secret-with-enough-length-32b"


def _cfg(**overrides):
    return Settings(_env_file=None, AUTH_JWT_SECRET=SECRET, **overrides)


def _token(claims, secret=SECRET):
    return jwt.encode(claims, secret, algorithm="HS256")


def test_valid_token_yields_subject():
    token = _token({"sub": "user_jwt", "exp": int(time.time()) + 60})
    assert verify_session_jwt(token, _cfg()) == "user_jwt"


def test_expired_token_rejected():
    token = _token({"sub": "user_jwt", "exp": int(time.time()) - 60})
    with pytest.raises(AuthenticationError, match="expired"):
        verify_session_jwt(token, _cfg())


def test_wrong_secret_rejected():
    token = _token({"sub": "user_jwt"}, secret="another-secret-that-is-long-enough")
    with pytest.raises(AuthenticationError):
        verify_session_jwt(token, _cfg())


def test_audience_enforced_when_configured():
    token = _token({"sub": "user_jwt", "aud": "other"})
    with pytest.raises(AuthenticationError):
        verify_session_jwt(token, _cfg(AUTH_JWT_AUDIENCE="authenticated"))
    good = _token({"sub": "user_jwt", "aud": "authenticated"})
    assert verify_session_jwt(good, _cfg(AUTH_JWT_AUDIENCE="authenticated")) == "user_jwt"


def test_missing_subject_rejected():
    with pytest.raises(AuthenticationError):
        verify_session_jwt(_token({"role": "authenticated"}), _cfg())


def test_unconfigured_secret_rejects_everything():
    with pytest.raises(AuthenticationError):
        verify_session_jwt(_token({"sub": "x"}), Settings(_env_file=None, AUTH_JWT_SECRET=None))


def test_bearer_token_authenticates_api(client, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", SECRET)
    monkeypatch.setattr(settings, "ALLOW_USER_ID_HEADER", False)
    token = _token({"sub": "user_bearer", "exp": int(time.time()) + 60})

    resp = client.get("/api/credits", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 200
    assert resp.json()["availableCredits"] == 5

    bad = client.get("/api/credits", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401
