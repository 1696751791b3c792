from fastapi import APIRouter, Depends
from sqlmodel import Session

from workshop.config import Settings, get_settings
from workshop.db import get_session
from workshop.deps import require_user
from workshop.models import User
from workshop.schemas import AuthResponse, LoginRequest, RegisterRequest, UserBrief, UserResponse, UserRead
from workshop.security import create_access_token
from workshop.services import users as user_service

router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_payload(user: User, settings: Settings, message: str) -> AuthResponse:
    token = create_access_token(user.id, user.name, user.role, settings)
    return AuthResponse(message=message, token=token, user=UserBrief.model_validate(user))


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(
    data: RegisterRequest,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    # 公开接口：初始化第一个管理员也走这里（见 registration_mode）
    user = user_service.register_user(session, settings, data)
    return _auth_payload(user, settings, "User registered successfully")


@router.post("/login", response_model=AuthResponse)
def login(
    data: LoginRequest,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    user = user_service.authenticate(session, data.name, data.password)
    return _auth_payload(user, settings, "Login successful")


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(require_user)):
    return UserResponse(user=UserRead.model_validate(user))
