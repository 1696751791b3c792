from fastapi import APIRouter, Depends
from sqlmodel import Session

from workshop.config import Settings, get_settings
from workshop.db import get_session
from workshop.deps import require_action
from workshop.models import User
from workshop.policy import Action
from workshop.schemas import MessageResponse, UserCreate, UserListResponse, UserRead, UserResponse, UserUpdate
from workshop.services import users as user_service

# 整个 /users 只对 admin / user-admin 开放；针对具体目标用户的规则在 service 里
router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=UserListResponse)
def list_users(
    session: Session = Depends(get_session),
    _user: User = Depends(require_action(Action.VIEW_USERS)),
):
    users = user_service.list_users(session)
    return UserListResponse(count=len(users), users=[UserRead.model_validate(u) for u in users])


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    data: UserCreate,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    actor: User = Depends(require_action(Action.CREATE_USER)),
):
    user = user_service.create_managed_user(session, settings, actor, data)
    return UserResponse(message="User created successfully", user=UserRead.model_validate(user))


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    session: Session = Depends(get_session),
    _user: User = Depends(require_action(Action.VIEW_USERS)),
):
    return UserResponse(user=UserRead.model_validate(user_service.get_user(session, user_id)))


@router.put("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    data: UserUpdate,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    actor: User = Depends(require_action(Action.EDIT_USER)),
):
    user = user_service.update_user(session, settings, actor, user_id, data)
    return UserResponse(message="User updated successfully", user=UserRead.model_validate(user))


@router.delete("/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: int,
    session: Session = Depends(get_session),
    actor: User = Depends(require_action(Action.DELETE_USER)),
):
    user_service.delete_user(session, actor, user_id)
    return MessageResponse(message="User deleted successfully")
