from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from workshop.config import Settings, get_settings
from workshop.db import get_session
from workshop.error import _auth_401
from workshop.models import User
from workshop.policy import Action, ensure_allowed
from workshop.security import TokenExpiredError, InvalidTokenError, decode_token

# ✅ auto_error=False，让我们接管“没带token”的错误格式
bearer_scheme = HTTPBearer(auto_error=False)


def require_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> User:
    # 1) 没带 token
    if creds is None or not creds.credentials:
        raise _auth_401("NOT_AUTHENTICATED", "Access denied. No token provided.")

    # 2) token 过期 / 无效（对外只区分这两种说法）
    try:
        claims = decode_token(creds.credentials, settings)
    except TokenExpiredError:
        raise _auth_401("TOKEN_EXPIRED", "Token has expired. Please login again.")
    except InvalidTokenError:
        raise _auth_401("INVALID_TOKEN", "Invalid token.")

    # 3) token 验过了，但用户被删了 / 被停用了
    user = session.get(User, claims.user_id)
    if not user:
        raise _auth_401("USER_NOT_FOUND", "User not found.")
    if not user.is_active:
        raise _auth_401("ACCOUNT_DISABLED", "Account has been deactivated.")

    return user


def require_action(action: Action):
    def _guard(user: User = Depends(require_user)) -> User:
        ensure_allowed(user.role, action)
        return user

    _guard.__name__ = f"require_{action.name.lower()}"
    return _guard
