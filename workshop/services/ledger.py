import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from workshop.error import abort, conflict
from workshop.logging import log_event
from workshop.models import Item, Transaction, User, utcnow
from workshop.schemas import (
    ItemStatus,
    LedgerIssue,
    TransactionAction,
    TransactionSort,
)
from workshop.services.item_state import Inside, ItemState, Outside, state_columns, state_of
from workshop.services.items import get_item_by_code

RECENT_WINDOW = timedelta(hours=24)
RECENT_LIMIT = 50


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _transition(
    session: Session,
    item: Item,
    expected: ItemStatus,
    new_state: ItemState,
    tx: Transaction,
) -> tuple[Item, Transaction]:
    """Move ``item`` out of ``expected`` into ``new_state`` and append ``tx``.

    The status check and the write are one conditional UPDATE, and the ledger
    insert shares its database transaction.
    """
    item_id = item.id
    now = tx.timestamp
    items = Item.__table__
    stmt = (
        update(items)
        .where(items.c.id == item_id, items.c.status == expected.value)
        .values(**state_columns(new_state), last_updated=now, updated_at=now)
    )
    result = session.connection().execute(stmt)
    if result.rowcount != 1:
        # 读完之后被别的请求抢先改了
        session.rollback()
        _reject_wrong_state(new_state)

    session.add(tx)
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log_event(
            "ledger_append_failed",
            level=logging.ERROR,
            item_id=item_id,
            action=tx.action,
            error=f"{type(e).__name__}: {e}",
        )
        abort(500, "LEDGER_APPEND_FAILED", "Could not record the transaction; the item was not changed")

    session.refresh(item)
    session.refresh(tx)
    return item, tx


def _reject_wrong_state(target: ItemState) -> None:
    if isinstance(target, Outside):
        conflict("ITEM_ALREADY_OUT", "Item is already checked out")
    conflict("ITEM_ALREADY_IN", "Item is already checked in")


def check_out(
    session: Session,
    actor: User,
    code: str,
    *,
    checkout_person: Optional[str] = None,
    project_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> tuple[Item, Transaction]:
    item = get_item_by_code(session, code)

    new_state = Outside(
        holder_id=actor.id,
        checkout_person=_clean(checkout_person) or actor.name,
        project_name=_clean(project_name),
    )
    if item.status == ItemStatus.OUTSIDE.value:
        _reject_wrong_state(new_state)

    tx = Transaction(
        item_id=item.id,
        user_id=actor.id,
        action=TransactionAction.CHECK_OUT.value,
        timestamp=utcnow(),
        notes=_clean(notes),
        item_code=item.code,
        item_name=item.name,
        user_name=actor.name,
        checkout_person=new_state.checkout_person,
        project_name=new_state.project_name,
    )
    item, tx = _transition(session, item, ItemStatus.INSIDE, new_state, tx)

    log_event("item_checked_out", item_id=item.id, code=item.code, user_id=actor.id, transaction_id=tx.id)
    return item, tx


def check_in(
    session: Session,
    actor: User,
    code: str,
    *,
    notes: Optional[str] = None,
) -> tuple[Item, Transaction]:
    item = get_item_by_code(session, code)

    new_state = Inside()
    if item.status == ItemStatus.INSIDE.value:
        _reject_wrong_state(new_state)

    tx = Transaction(
        item_id=item.id,
        user_id=actor.id,
        action=TransactionAction.CHECK_IN.value,
        timestamp=utcnow(),
        notes=_clean(notes),
        item_code=item.code,
        item_name=item.name,
        user_name=actor.name,
    )
    item, tx = _transition(session, item, ItemStatus.OUTSIDE, new_state, tx)

    log_event("item_checked_in", item_id=item.id, code=item.code, user_id=actor.id, transaction_id=tx.id)
    return item, tx


def list_transactions(
    session: Session,
    *,
    action: Optional[TransactionAction] = None,
    item_id: Optional[int] = None,
    user_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    sort: TransactionSort = TransactionSort.newest,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Transaction], int]:
    stmt = select(Transaction)
    count_stmt = select(func.count()).select_from(Transaction)

    conds = []
    if action is not None:
        conds.append(Transaction.action == action.value)
    if item_id is not None:
        conds.append(Transaction.item_id == item_id)
    if user_id is not None:
        conds.append(Transaction.user_id == user_id)
    # 左闭右开 [start, end)
    if start is not None:
        conds.append(Transaction.timestamp >= start)
    if end is not None:
        conds.append(Transaction.timestamp < end)

    if conds:
        stmt = stmt.where(*conds)
        count_stmt = count_stmt.where(*conds)

    if sort == TransactionSort.oldest:
        stmt = stmt.order_by(Transaction.timestamp.asc(), Transaction.id.asc())
    else:
        stmt = stmt.order_by(Transaction.timestamp.desc(), Transaction.id.desc())

    total = session.exec(count_stmt).one()
    rows = session.exec(stmt.offset(offset).limit(limit)).all()
    return rows, total


def recent_transactions(session: Session) -> list[Transaction]:
    since = utcnow() - RECENT_WINDOW
    stmt = (
        select(Transaction)
        .where(Transaction.timestamp >= since)
        .order_by(Transaction.timestamp.desc(), Transaction.id.desc())
        .limit(RECENT_LIMIT)
    )
    return session.exec(stmt).all()


def item_history(session: Session, item_id: int) -> list[Transaction]:
    stmt = (
        select(Transaction)
        .where(Transaction.item_id == item_id)
        .order_by(Transaction.timestamp.desc(), Transaction.id.desc())
    )
    return session.exec(stmt).all()


def _latest_per_item(session: Session) -> dict[int, Transaction]:
    latest_ids = (
        select(func.max(Transaction.id))
        .where(Transaction.item_id.is_not(None))
        .group_by(Transaction.item_id)
    )
    rows = session.exec(select(Transaction).where(Transaction.id.in_(latest_ids))).all()
    return {t.item_id: t for t in rows}


def reconcile(session: Session) -> tuple[int, list[LedgerIssue]]:
    """Compare every item's state with its latest ledger entry."""
    items = session.exec(select(Item).order_by(Item.id.asc())).all()
    latest = _latest_per_item(session)

    issues: list[LedgerIssue] = []
    for item in items:
        state = state_of(item)
        last = latest.get(item.id)
        last_action = TransactionAction(last.action) if last else None

        problem = None
        if isinstance(state, Outside):
            if last is None:
                problem = "Item is Outside but has no ledger entries"
            elif last_action != TransactionAction.CHECK_OUT:
                problem = "Item is Outside but its latest ledger entry is a CheckIn"
            elif last.user_id != state.holder_id:
                problem = "Item holder does not match the user on its latest CheckOut"
        elif last_action == TransactionAction.CHECK_OUT:
            problem = "Item is Inside but its latest ledger entry is a CheckOut"

        if problem:
            issues.append(
                LedgerIssue(
                    item_id=item.id,
                    item_code=item.code,
                    status=ItemStatus(item.status),
                    problem=problem,
                    last_action=last_action,
                    last_transaction_id=last.id if last else None,
                )
            )

    if issues:
        log_event("ledger_inconsistent", level=logging.WARNING, issues=len(issues))
    return len(items), issues
