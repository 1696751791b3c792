from typing import Optional
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime

from workshop.policy import Role


class ApiModel(BaseModel):
    # 对外 camelCase，对内 snake_case；入参两种都收
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ItemStatus(str, Enum):
    INSIDE = "Inside"
    OUTSIDE = "Outside"


class TransactionAction(str, Enum):
    CHECK_OUT = "CheckOut"
    CHECK_IN = "CheckIn"


class TransactionSort(str, Enum):
    newest = "newest"
    oldest = "oldest"


class ItemSort(str, Enum):
    updated_desc = "updated_desc"
    updated_asc = "updated_asc"
    name_asc = "name_asc"
    name_desc = "name_desc"
    code_asc = "code_asc"
    code_desc = "code_desc"


# ---------- auth / users ----------

class RegisterRequest(ApiModel):
    name: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=6, max_length=256)
    role: Optional[Role] = None


class LoginRequest(ApiModel):
    name: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=6, max_length=256)
    role: Optional[Role] = None


class UserUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    password: Optional[str] = Field(None, min_length=6, max_length=256)
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class UserBrief(ApiModel):
    id: int
    name: str
    role: Role


class UserRead(UserBrief):
    is_active: bool
    created_at: datetime
    updated_at: datetime


class UserRef(ApiModel):
    id: int
    name: str


class AuthResponse(ApiModel):
    success: bool = True
    message: str
    token: str
    user: UserBrief


class UserResponse(ApiModel):
    success: bool = True
    message: Optional[str] = None
    user: UserRead


class UserListResponse(ApiModel):
    success: bool = True
    count: int
    users: list[UserRead]


class MessageResponse(ApiModel):
    success: bool = True
    message: str


# ---------- items ----------

class ItemCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=200)
    code: str = Field(..., min_length=1, max_length=64)
    category: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    image_url: Optional[str] = None


class ItemUpdate(ApiModel):
    # 只允许改元数据；status / 借用人 只能走 checkout / checkin
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    category: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    image_url: Optional[str] = None


class ItemRead(ApiModel):
    id: int
    name: str
    code: str
    category: str
    status: ItemStatus
    description: Optional[str] = None
    location: str
    image_url: Optional[str] = None
    current_user: Optional[UserRef] = None
    checkout_person: Optional[str] = None
    project_name: Optional[str] = None
    last_updated: datetime
    created_at: datetime
    updated_at: datetime


class ItemResponse(ApiModel):
    success: bool = True
    message: Optional[str] = None
    item: ItemRead


class ItemListResponse(ApiModel):
    success: bool = True
    count: int
    total: int
    limit: int
    offset: int
    items: list[ItemRead]


class CategoryCount(ApiModel):
    category: str
    count: int


# ---------- transactions ----------

class TransactionRead(ApiModel):
    id: int
    item_id: Optional[int] = None
    user_id: Optional[int] = None
    action: TransactionAction
    timestamp: datetime
    notes: Optional[str] = None
    item_code: str
    item_name: str
    user_name: str
    checkout_person: Optional[str] = None
    project_name: Optional[str] = None


class CheckOutRequest(ApiModel):
    code: str = Field(..., min_length=1, max_length=64)
    checkout_person: Optional[str] = Field(None, max_length=100)
    project_name: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=1000)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"code": "DRL-001", "checkoutPerson": "Nimal", "projectName": "Bridge rig"},
            ]
        }
    )


class CheckInRequest(ApiModel):
    code: str = Field(..., min_length=1, max_length=64)
    notes: Optional[str] = Field(None, max_length=1000)


class TransitionResponse(ApiModel):
    success: bool = True
    message: str
    item: ItemRead
    transaction: TransactionRead


class TransactionListResponse(ApiModel):
    success: bool = True
    count: int
    total: Optional[int] = None
    transactions: list[TransactionRead]


class DashboardStats(ApiModel):
    total_items: int
    inside_items: int
    outside_items: int
    recent_transactions: list[TransactionRead]
    category_stats: list[CategoryCount]


class StatsResponse(ApiModel):
    success: bool = True
    stats: DashboardStats


class LedgerIssue(ApiModel):
    item_id: int
    item_code: str
    status: ItemStatus
    problem: str
    last_action: Optional[TransactionAction] = None
    last_transaction_id: Optional[int] = None


class ReconcileResponse(ApiModel):
    success: bool = True
    consistent: bool
    checked: int
    issues: list[LedgerIssue]
