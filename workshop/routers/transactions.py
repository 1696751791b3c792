from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from workshop.db import get_session
from workshop.deps import require_action
from workshop.models import User
from workshop.policy import Action
from workshop.schemas import (
    CheckInRequest,
    CheckOutRequest,
    ReconcileResponse,
    TransactionAction,
    TransactionListResponse,
    TransactionRead,
    TransactionSort,
    TransitionResponse,
)
from workshop.services import items as item_service
from workshop.services import ledger
from workshop.timeutil import parse_range

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=TransactionListResponse)
def list_transactions(
    action: Optional[TransactionAction] = Query(None, description="CheckOut / CheckIn"),
    item_id: Optional[int] = Query(None, ge=1),
    user_id: Optional[int] = Query(None, ge=1),
    tz: Optional[str] = Query(None, description="IANA 时区，start/end 不带时区时按它解释"),
    start: Optional[str] = Query(None, description="2026-01-12 或 2026-01-12T08:30:00"),
    end: Optional[str] = Query(None, description="左闭右开；纯日期表示包含当天"),
    sort: TransactionSort = Query(TransactionSort.newest),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    _user: User = Depends(require_action(Action.VIEW_INVENTORY)),
):
    start_dt, end_dt = parse_range(start or None, end or None, tz)

    rows, total = ledger.list_transactions(
        session,
        action=action,
        item_id=item_id,
        user_id=user_id,
        start=start_dt,
        end=end_dt,
        sort=sort,
        limit=limit,
        offset=offset,
    )
    return TransactionListResponse(
        count=len(rows),
        total=total,
        transactions=[TransactionRead.model_validate(t) for t in rows],
    )


@router.get("/recent", response_model=TransactionListResponse)
def recent_transactions(
    session: Session = Depends(get_session),
    _user: User = Depends(require_action(Action.VIEW_INVENTORY)),
):
    rows = ledger.recent_transactions(session)
    return TransactionListResponse(count=len(rows), transactions=[TransactionRead.model_validate(t) for t in rows])


@router.get("/reconcile", response_model=ReconcileResponse)
def reconcile(
    session: Session = Depends(get_session),
    _user: User = Depends(require_action(Action.RECONCILE_LEDGER)),
):
    checked, issues = ledger.reconcile(session)
    return ReconcileResponse(consistent=not issues, checked=checked, issues=issues)


@router.get("/item/{item_id}", response_model=TransactionListResponse)
def item_history(
    item_id: int,
    session: Session = Depends(get_session),
    _user: User = Depends(require_action(Action.VIEW_INVENTORY)),
):
    rows = ledger.item_history(session, item_id)
    return TransactionListResponse(count=len(rows), transactions=[TransactionRead.model_validate(t) for t in rows])


@router.post("/checkout", response_model=TransitionResponse)
def checkout(
    data: CheckOutRequest,
    session: Session = Depends(get_session),
    user: User = Depends(require_action(Action.CHECK_OUT)),
):
    item, tx = ledger.check_out(
        session,
        user,
        data.code,
        checkout_person=data.checkout_person,
        project_name=data.project_name,
        notes=data.notes,
    )
    return TransitionResponse(
        message="Item checked out successfully",
        item=item_service.to_read(session, [item])[0],
        transaction=TransactionRead.model_validate(tx),
    )


@router.post("/checkin", response_model=TransitionResponse)
def checkin(
    data: CheckInRequest,
    session: Session = Depends(get_session),
    user: User = Depends(require_action(Action.CHECK_IN)),
):
    item, tx = ledger.check_in(session, user, data.code, notes=data.notes)
    return TransitionResponse(
        message="Item checked in successfully",
        item=item_service.to_read(session, [item])[0],
        transaction=TransactionRead.model_validate(tx),
    )
