from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from uuid import uuid4

from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext

from workshop.config import Settings

DEFAULT_ROUNDS = 29000


class InvalidTokenError(Exception):
    pass


class TokenExpiredError(InvalidTokenError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    name: str
    role: str
    expires_at: datetime


@lru_cache(maxsize=8)
def _pwd_context(rounds: int) -> CryptContext:
    return CryptContext(
        schemes=["pbkdf2_sha256"],
        deprecated="auto",
        pbkdf2_sha256__default_rounds=rounds,
    )


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    return _pwd_context(rounds).hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    # 摘要格式不对也只返回 False，不往外抛
    try:
        return _pwd_context(DEFAULT_ROUNDS).verify(password, password_hash)
    except (ValueError, TypeError):
        return False


def create_access_token(user_id: int, name: str, role: str, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    iat = int(now.timestamp())
    exp = iat + settings.access_token_expire_minutes * 60

    payload = {
        "sub": str(user_id),
        "name": name,
        "role": role,
        "iat": iat,
        "exp": exp,
        "jti": uuid4().hex,
        "type": "access",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> TokenClaims:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as e:
        raise TokenExpiredError("Token has expired") from e
    except JWTError as e:
        raise InvalidTokenError("Invalid token") from e

    if payload.get("type") not in (None, "access"):
        raise InvalidTokenError("Invalid token type")

    try:
        user_id = int(payload["sub"])
        exp = int(payload["exp"])
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidTokenError("Missing subject or expiry") from e

    return TokenClaims(
        user_id=user_id,
        name=payload.get("name", ""),
        role=payload.get("role", ""),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )
