from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from workshop.config import Settings
from workshop.error import abort, conflict, forbidden, not_found, _auth_401
from workshop.logging import log_event
from workshop.models import Item, User, utcnow
from workshop.policy import Action, Role, ensure_allowed, resolve_role_update
from workshop.schemas import ItemStatus, RegisterRequest, UserCreate, UserUpdate
from workshop.security import hash_password, verify_password

USER_EXISTS_MESSAGE = "A user with this name already exists"
# 用户不存在 / 密码错误 统一口径，防止枚举账号
INVALID_CREDENTIALS_MESSAGE = "Login credentials incorrect. Please try again."


def normalize_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        abort(400, "BAD_REQUEST", "Name is required")
    return name


def find_by_name(session: Session, name: str) -> Optional[User]:
    stmt = select(User).where(func.lower(User.name) == name.strip().lower())
    return session.exec(stmt).first()


def _commit_unique_name(session: Session) -> None:
    # 并发下 unique 冲突兜底（lower(name) 唯一索引）
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        conflict("USER_EXISTS", USER_EXISTS_MESSAGE)


def create_user(
    session: Session,
    settings: Settings,
    *,
    name: str,
    password: str,
    role: Optional[Role] = None,
) -> User:
    name = normalize_name(name)

    # 1) 先查一遍，给友好提示
    if find_by_name(session, name):
        conflict("USER_EXISTS", USER_EXISTS_MESSAGE)

    user = User(
        name=name,
        password_hash=hash_password(password, settings.password_hash_rounds),
        role=(role or Role.STAFF).value,
    )
    session.add(user)

    # 2) 再兜底一次
    _commit_unique_name(session)
    session.refresh(user)
    return user


def register_user(session: Session, settings: Settings, data: RegisterRequest) -> User:
    """Public sign-up. Also the only way to mint a user-admin.

    In ``bootstrap`` mode a requested role is honoured only for the very first
    account; later registrations always become staff.
    """
    role = data.role or Role.STAFF
    if settings.registration_mode == "bootstrap" and role != Role.STAFF:
        has_users = session.exec(select(func.count()).select_from(User)).one() > 0
        if has_users:
            role = Role.STAFF

    user = create_user(session, settings, name=data.name, password=data.password, role=role)
    log_event("user_registered", user_id=user.id, name=user.name, role=user.role)
    return user


def authenticate(session: Session, name: str, password: str) -> User:
    user = find_by_name(session, name)
    if (not user) or (not verify_password(password, user.password_hash)):
        log_event("login_failed", name=name.strip())
        raise _auth_401("INVALID_CREDENTIALS", INVALID_CREDENTIALS_MESSAGE)

    # 密码正确之后才告诉对方账号被停用
    if not user.is_active:
        raise _auth_401("ACCOUNT_DISABLED", "Your account has been deactivated. Please contact administrator.")

    log_event("user_login", user_id=user.id, name=user.name)
    return user


def list_users(session: Session) -> list[User]:
    return session.exec(select(User).order_by(User.name.asc())).all()


def get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        not_found("User", "USER_NOT_FOUND")
    return user


def create_managed_user(session: Session, settings: Settings, actor: User, data: UserCreate) -> User:
    ensure_allowed(actor.role, Action.CREATE_USER, actor_id=actor.id, requested_role=data.role)
    user = create_user(session, settings, name=data.name, password=data.password, role=data.role)
    log_event("user_created", user_id=user.id, name=user.name, role=user.role, by=actor.id)
    return user


def update_user(session: Session, settings: Settings, actor: User, user_id: int, data: UserUpdate) -> User:
    target = get_user(session, user_id)
    ensure_allowed(
        actor.role,
        Action.EDIT_USER,
        actor_id=actor.id,
        target_id=target.id,
        target_role=target.role,
        requested_role=data.role,
    )

    changes = data.model_dump(exclude_unset=True)

    # 自己停用自己之后就再也登不进来了
    if target.id == actor.id and changes.get("is_active") is False:
        forbidden("CANNOT_DEACTIVATE_SELF", "Cannot deactivate your own account")

    if changes.get("name") is not None:
        name = normalize_name(changes["name"])
        existing = find_by_name(session, name)
        if existing and existing.id != target.id:
            conflict("USER_EXISTS", USER_EXISTS_MESSAGE)
        target.name = name

    role = resolve_role_update(actor.id, actor.role, target.id, data.role)
    if role is not None:
        target.role = role

    if changes.get("is_active") is not None:
        target.is_active = changes["is_active"]

    # 只有传了新密码才重新 hash
    if changes.get("password"):
        target.password_hash = hash_password(changes["password"], settings.password_hash_rounds)

    target.updated_at = utcnow()
    session.add(target)
    _commit_unique_name(session)
    session.refresh(target)

    log_event("user_updated", user_id=target.id, fields=sorted(changes), by=actor.id)
    return target


def delete_user(session: Session, actor: User, user_id: int) -> None:
    target = get_user(session, user_id)
    ensure_allowed(
        actor.role,
        Action.DELETE_USER,
        actor_id=actor.id,
        target_id=target.id,
        target_role=target.role,
    )

    # 手上还有没还的东西就不让删，否则 Item 的借用人会悬空
    held = session.exec(
        select(func.count())
        .select_from(Item)
        .where(Item.current_user_id == target.id, Item.status == ItemStatus.OUTSIDE.value)
    ).one()
    if held:
        conflict("USER_HOLDS_ITEMS", f"User still holds {held} checked-out item(s)")

    session.delete(target)
    session.commit()
    log_event("user_deleted", user_id=user_id, by=actor.id)
