"""
Role-based access control for the workshop.

All role checks go through ``decide``: routers guard with ``require_action``
(deps.py), the user directory passes the target user in as well.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from workshop.error import forbidden


class Role(str, Enum):
    ADMIN = "admin"
    USER_ADMIN = "user-admin"
    STAFF = "staff"
    VIEWER = "viewer"


class Action(str, Enum):
    VIEW_INVENTORY = "inventory:view"  # items / stats / export / transactions
    CREATE_ITEM = "items:create"
    EDIT_ITEM = "items:edit"
    DELETE_ITEM = "items:delete"
    CHECK_OUT = "items:checkout"
    CHECK_IN = "items:checkin"
    RECONCILE_LEDGER = "ledger:reconcile"
    VIEW_USERS = "users:view"
    CREATE_USER = "users:create"
    EDIT_USER = "users:edit"
    DELETE_USER = "users:delete"


_USER_MANAGEMENT = frozenset({Action.VIEW_USERS, Action.CREATE_USER, Action.EDIT_USER, Action.DELETE_USER})

ROLE_PERMISSIONS: dict[Role, frozenset[Action]] = {
    Role.ADMIN: frozenset(Action),
    # user-admin 只管人，不碰物品
    Role.USER_ADMIN: frozenset({Action.VIEW_INVENTORY}) | _USER_MANAGEMENT,
    Role.STAFF: frozenset({Action.VIEW_INVENTORY, Action.EDIT_ITEM, Action.CHECK_OUT, Action.CHECK_IN}),
    Role.VIEWER: frozenset({Action.VIEW_INVENTORY}),
}

PRIVILEGED_ROLES = frozenset({Role.ADMIN, Role.USER_ADMIN})


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = "OK"
    message: str = ""


ALLOW = Decision(True)


def _deny(reason: str, message: str) -> Decision:
    return Decision(False, reason, message)


def _as_role(value) -> Optional[Role]:
    if value is None:
        return None
    try:
        return Role(value)
    except ValueError:
        return None


def decide(
    actor_role,
    action: Action,
    *,
    actor_id: Optional[int] = None,
    target_id: Optional[int] = None,
    target_role=None,
    requested_role=None,
) -> Decision:
    role = _as_role(actor_role)
    if role is None:
        return _deny("UNKNOWN_ROLE", "Access denied. Unknown role.")

    if action not in ROLE_PERMISSIONS[role]:
        if action in _USER_MANAGEMENT:
            return _deny("USER_MANAGEMENT_REQUIRED", "Access denied. User management privileges required.")
        if action in (Action.CREATE_ITEM, Action.DELETE_ITEM, Action.RECONCILE_LEDGER):
            return _deny("ADMIN_REQUIRED", "Access denied. Admin privileges required.")
        return _deny("MODIFY_FORBIDDEN", "Access denied. You do not have permission to modify data.")

    target = _as_role(target_role)
    requested = _as_role(requested_role)
    is_self = actor_id is not None and actor_id == target_id

    if action == Action.CREATE_USER:
        if requested == Role.USER_ADMIN:
            return _deny(
                "USER_ADMIN_REGISTER_ONLY",
                "Cannot create user-admin users. Use the register endpoint for initial setup.",
            )
        if role == Role.USER_ADMIN and requested == Role.ADMIN:
            return _deny("ADMIN_TARGET_FORBIDDEN", "User admins cannot create admin accounts")

    elif action == Action.EDIT_USER:
        # 改自己：总是允许，角色字段由 resolve_role_update 强制保留
        if is_self:
            return ALLOW
        if role == Role.ADMIN and target == Role.ADMIN:
            return _deny("CANNOT_EDIT_OTHER_ADMIN", "Cannot edit another admin account")
        if role == Role.USER_ADMIN and target == Role.ADMIN:
            return _deny("ADMIN_TARGET_FORBIDDEN", "User admins cannot edit admin accounts")
        if role == Role.USER_ADMIN and target == Role.USER_ADMIN:
            return _deny("CANNOT_EDIT_OTHER_USER_ADMIN", "User admins cannot edit other user-admin accounts")
        # 降级之后就能删掉，所以 user-admin 的角色别人改不了
        if target == Role.USER_ADMIN and requested not in (None, Role.USER_ADMIN):
            return _deny("USER_ADMIN_ROLE_LOCKED", "The role of a user-admin account cannot be changed")
        if requested == Role.USER_ADMIN and target != Role.USER_ADMIN:
            return _deny("USER_ADMIN_REGISTER_ONLY", "Users cannot be promoted to the user-admin role")
        if role == Role.USER_ADMIN and requested == Role.ADMIN:
            return _deny("ADMIN_TARGET_FORBIDDEN", "User admins cannot promote users to admin")

    elif action == Action.DELETE_USER:
        if is_self:
            return _deny("CANNOT_DELETE_SELF", "Cannot delete your own account")
        if target == Role.USER_ADMIN:
            return _deny("USER_ADMIN_UNDELETABLE", "Cannot delete user-admin accounts")
        if target == Role.ADMIN:
            return _deny("CANNOT_DELETE_OTHER_ADMIN", "Cannot delete an admin account")

    return ALLOW


def resolve_role_update(
    actor_id: Optional[int],
    actor_role,
    target_id: Optional[int],
    requested_role,
) -> Optional[str]:
    """Role to persist on an edit; None keeps the stored one.

    A privileged actor editing their own record never changes their own role.
    """
    if actor_id is not None and actor_id == target_id and _as_role(actor_role) in PRIVILEGED_ROLES:
        return None
    requested = _as_role(requested_role)
    return requested.value if requested else None


def ensure_allowed(actor_role, action: Action, **context) -> None:
    decision = decide(actor_role, action, **context)
    if not decision.allowed:
        forbidden(decision.reason, decision.message)
