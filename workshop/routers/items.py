from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlmodel import Session

from workshop.db import get_session
from workshop.deps import require_action
from workshop.models import User
from workshop.policy import Action
from workshop.schemas import (
    CheckInRequest,
    CheckOutRequest,
    ItemCreate,
    ItemListResponse,
    ItemResponse,
    ItemSort,
    ItemStatus,
    ItemUpdate,
    MessageResponse,
    StatsResponse,
    TransitionResponse,
)
from workshop.services import items as item_service
from workshop.routers.transactions import checkin, checkout

router = APIRouter(prefix="/items", tags=["items"])


@router.get("", response_model=ItemListResponse)
def list_items(
    status: Optional[ItemStatus] = Query(None, description="Inside / Outside"),
    category: Optional[str] = Query(None, description="分类；All 表示不过滤"),
    search: Optional[str] = Query(None, max_length=100, description="名称 / 编码 / 描述 模糊搜索"),
    sort: ItemSort = Query(ItemSort.updated_desc),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    _user: User = Depends(require_action(Action.VIEW_INVENTORY)),
):
    items, total = item_service.list_items(
        session,
        status=status,
        category=category,
        search=search,
        sort=sort,
        limit=limit,
        offset=offset,
    )
    rows = item_service.to_read(session, items)
    return ItemListResponse(count=len(rows), total=total, limit=limit, offset=offset, items=rows)


@router.get("/stats", response_model=StatsResponse)
def dashboard_stats(
    session: Session = Depends(get_session),
    _user: User = Depends(require_action(Action.VIEW_INVENTORY)),
):
    return StatsResponse(stats=item_service.dashboard_stats(session))


@router.get("/export.xlsx")
def export_items_xlsx(
    search: Optional[str] = Query(None, max_length=100),
    session: Session = Depends(get_session),
    _user: User = Depends(require_action(Action.VIEW_INVENTORY)),
):
    xlsx_bytes = item_service.export_items_xlsx(session, search=search)

    filename = "workshop-inventory.xlsx"
    headers = {
        "Content-Disposition": f"attachment; filename=\"{filename}\"; filename*=UTF-8''{quote(filename)}"
    }
    return Response(
        content=xlsx_bytes,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers=headers,
    )


# 扫码枪走这里
@router.get("/code/{code}", response_model=ItemResponse)
def get_item_by_code(
    code: str,
    session: Session = Depends(get_session),
    _user: User = Depends(require_action(Action.VIEW_INVENTORY)),
):
    item = item_service.get_item_by_code(session, code)
    return ItemResponse(item=item_service.to_read(session, [item])[0])


# 兼容老前端：/items/checkout、/items/checkin 与 /transactions 下的同名接口一致
@router.post("/checkout", response_model=TransitionResponse, include_in_schema=False)
def checkout_alias(
    data: CheckOutRequest,
    session: Session = Depends(get_session),
    user: User = Depends(require_action(Action.CHECK_OUT)),
):
    return checkout(data, session, user)


@router.post("/checkin", response_model=TransitionResponse, include_in_schema=False)
def checkin_alias(
    data: CheckInRequest,
    session: Session = Depends(get_session),
    user: User = Depends(require_action(Action.CHECK_IN)),
):
    return checkin(data, session, user)


@router.get("/{item_id}", response_model=ItemResponse)
def get_item(
    item_id: int,
    session: Session = Depends(get_session),
    _user: User = Depends(require_action(Action.VIEW_INVENTORY)),
):
    item = item_service.get_item(session, item_id)
    return ItemResponse(item=item_service.to_read(session, [item])[0])


@router.post("", response_model=ItemResponse, status_code=201)
def create_item(
    data: ItemCreate,
    session: Session = Depends(get_session),
    user: User = Depends(require_action(Action.CREATE_ITEM)),
):
    item = item_service.create_item(session, user, data)
    return ItemResponse(message="Item created successfully", item=item_service.to_read(session, [item])[0])


@router.put("/{item_id}", response_model=ItemResponse)
def update_item(
    item_id: int,
    data: ItemUpdate,
    session: Session = Depends(get_session),
    user: User = Depends(require_action(Action.EDIT_ITEM)),
):
    item = item_service.update_item(session, user, item_id, data)
    return ItemResponse(message="Item updated successfully", item=item_service.to_read(session, [item])[0])


@router.delete("/{item_id}", response_model=MessageResponse)
def delete_item(
    item_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(require_action(Action.DELETE_ITEM)),
):
    item_service.delete_item(session, user, item_id)
    return MessageResponse(message="Item deleted successfully")
