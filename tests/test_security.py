from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from workshop.config import Settings
from workshop.security import (
    InvalidTokenError,
    TokenExpiredError,
    create_access_token,
    decode_token,
    hash_password,
    verify_password,
)


def test_hash_and_verify():
    digest = hash_password("drill-bits-42", rounds=1000)
    assert digest != "drill-bits-42"
    assert digest.startswith("$pbkdf2-sha256$1000$")
    assert verify_password("drill-bits-42", digest) is True
    assert verify_password("drill-bits-43", digest) is False
    assert verify_password("", digest) is False


def test_hash_is_salted():
    assert hash_password("same", rounds=1000) != hash_password("same", rounds=1000)


def test_verify_malformed_digest_returns_false():
    assert verify_password("anything", "not-a-hash") is False
    assert verify_password("anything", "") is False


def test_token_roundtrip(settings):
    token = create_access_token(7, "Nimal", "staff", settings)
    claims = decode_token(token, settings)

    assert claims.user_id == 7
    assert claims.name == "Nimal"
    assert claims.role == "staff"


def test_default_token_lifetime_is_24_hours(monkeypatch):
    monkeypatch.delenv("ACCESS_TOKEN_EXPIRE_MINUTES", raising=False)
    settings = Settings(secret_key="k", database_url="sqlite://", _env_file=None)
    assert settings.access_token_expire_minutes == 24 * 60

    claims = decode_token(create_access_token(1, "a", "staff", settings), settings)
    remaining = claims.expires_at - datetime.now(timezone.utc)
    assert timedelta(hours=23, minutes=58) < remaining <= timedelta(hours=24)


def test_expired_token(settings):
    expired = settings.model_copy(update={"access_token_expire_minutes": -1})
    token = create_access_token(1, "a", "staff", expired)

    with pytest.raises(TokenExpiredError):
        decode_token(token, settings)


def test_tampered_token_is_invalid_not_expired(settings):
    other = settings.model_copy(update={"secret_key": "someone-else"})
    token = create_access_token(1, "a", "admin", other)

    with pytest.raises(InvalidTokenError) as exc_info:
        decode_token(token, settings)
    assert not isinstance(exc_info.value, TokenExpiredError)


@pytest.mark.parametrize("token", ["", "abc", "a.b.c"])
def test_garbage_token(settings, token):
    with pytest.raises(InvalidTokenError):
        decode_token(token, settings)


def test_token_without_subject(settings):
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=5)).timestamp())
    token = jwt.encode({"exp": exp, "role": "admin"}, settings.secret_key, algorithm="HS256")

    with pytest.raises(InvalidTokenError):
        decode_token(token, settings)


def test_refresh_type_token_rejected(settings):
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=5)).timestamp())
    token = jwt.encode({"sub": "1", "exp": exp, "type": "refresh"}, settings.secret_key, algorithm="HS256")

    with pytest.raises(InvalidTokenError):
        decode_token(token, settings)
