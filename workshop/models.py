from typing import Optional
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Index, func
from sqlmodel import SQLModel, Field

from workshop.policy import Role
from workshop.schemas import ItemStatus


def utcnow() -> datetime:
    # 统一用带时区的 UTC 时间
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, max_length=50)
    password_hash: str
    role: str = Field(default=Role.STAFF.value, index=True)
    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# 名字大小写不敏感唯一：在库里兜底，先查再写的竞态靠它挡住
Index("uq_user_name_ci", func.lower(User.__table__.c.name), unique=True)


class Item(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("status IN ('Inside', 'Outside')", name="ck_item_status"),
        CheckConstraint(
            "status = 'Outside' OR (current_user_id IS NULL"
            " AND checkout_person IS NULL AND project_name IS NULL)",
            name="ck_item_inside_has_no_holder",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    code: str = Field(index=True, unique=True)  # 大写
    category: str = Field(default="General", index=True)
    status: str = Field(default=ItemStatus.INSIDE.value, index=True)
    description: Optional[str] = None
    location: str = Field(default="Workshop")
    image_url: Optional[str] = None

    # 只在 Outside 时有值，写入统一走 item_state
    current_user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    checkout_person: Optional[str] = None
    project_name: Optional[str] = None

    last_updated: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Transaction(SQLModel, table=True):
    """Append-only ledger row. Snapshot columns keep history readable after renames."""

    id: Optional[int] = Field(default=None, primary_key=True)

    item_id: Optional[int] = Field(default=None, foreign_key="item.id", ondelete="SET NULL", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", ondelete="SET NULL", index=True)

    action: str = Field(index=True)  # CheckOut / CheckIn
    timestamp: datetime = Field(default_factory=utcnow, index=True)
    notes: Optional[str] = None

    item_code: str
    item_name: str
    user_name: str
    checkout_person: Optional[str] = None
    project_name: Optional[str] = None
