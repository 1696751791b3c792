import io
from datetime import datetime
from typing import Iterable, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.worksheet.table import Table, TableStyleInfo
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from workshop.error import abort, conflict, not_found
from workshop.logging import log_event
from workshop.models import Item, Transaction, User, utcnow
from workshop.schemas import (
    CategoryCount,
    DashboardStats,
    ItemCreate,
    ItemRead,
    ItemSort,
    ItemStatus,
    ItemUpdate,
    TransactionRead,
    UserRef,
)
from workshop.timeutil import naive_utc

ITEM_CODE_EXISTS_MESSAGE = "Item with this code already exists"

ORDER_MAP = {
    ItemSort.updated_desc: (Item.last_updated.desc(), Item.id.desc()),
    ItemSort.updated_asc: (Item.last_updated.asc(), Item.id.asc()),
    ItemSort.name_asc: (Item.name.asc(), Item.id.asc()),
    ItemSort.name_desc: (Item.name.desc(), Item.id.desc()),
    ItemSort.code_asc: (Item.code.asc(),),
    ItemSort.code_desc: (Item.code.desc(),),
}


def normalize_code(code: Optional[str]) -> str:
    code = (code or "").strip().upper()
    if not code:
        abort(400, "BAD_REQUEST", "Item code is required")
    return code


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def to_read(session: Session, items: Iterable[Item]) -> list[ItemRead]:
    """Serialize items with their current holder resolved in one query."""
    items = list(items)
    holder_ids = {i.current_user_id for i in items if i.current_user_id is not None}
    holders = {}
    if holder_ids:
        rows = session.exec(select(User).where(User.id.in_(holder_ids))).all()
        holders = {u.id: UserRef(id=u.id, name=u.name) for u in rows}

    return [
        ItemRead.model_validate(i).model_copy(update={"current_user": holders.get(i.current_user_id)})
        for i in items
    ]


def _escape_like(text: str) -> str:
    # % 和 _ 按字面匹配
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _filters(status: Optional[ItemStatus], category: Optional[str], search: Optional[str]) -> list:
    conds = []
    if status is not None:
        conds.append(Item.status == status.value)
    if category and category.strip() and category.strip() != "All":
        conds.append(Item.category == category.strip())
    if search and search.strip():
        pattern = f"%{_escape_like(search.strip().lower())}%"
        conds.append(
            or_(
                func.lower(Item.name).like(pattern, escape="\\"),
                func.lower(Item.code).like(pattern, escape="\\"),
                func.lower(Item.description).like(pattern, escape="\\"),
            )
        )
    return conds


def list_items(
    session: Session,
    *,
    status: Optional[ItemStatus] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    sort: ItemSort = ItemSort.updated_desc,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Item], int]:
    conds = _filters(status, category, search)

    count_stmt = select(func.count()).select_from(Item)
    items_stmt = select(Item)
    if conds:
        count_stmt = count_stmt.where(*conds)
        items_stmt = items_stmt.where(*conds)

    total = session.exec(count_stmt).one()
    items = session.exec(items_stmt.order_by(*ORDER_MAP[sort]).offset(offset).limit(limit)).all()
    return items, total


def get_item(session: Session, item_id: int) -> Item:
    item = session.get(Item, item_id)
    if not item:
        not_found("Item", "ITEM_NOT_FOUND")
    return item


def find_by_code(session: Session, code: str) -> Optional[Item]:
    return session.exec(select(Item).where(Item.code == normalize_code(code))).first()


def get_item_by_code(session: Session, code: str) -> Item:
    item = find_by_code(session, code)
    if not item:
        not_found("Item", "ITEM_NOT_FOUND")
    return item


def create_item(session: Session, actor: User, data: ItemCreate) -> Item:
    code = normalize_code(data.code)
    name = _clean(data.name)
    if not name:
        abort(400, "BAD_REQUEST", "Item name is required")

    if find_by_code(session, code):
        conflict("ITEM_CODE_EXISTS", ITEM_CODE_EXISTS_MESSAGE)

    item = Item(
        name=name,
        code=code,
        category=_clean(data.category) or "General",
        description=_clean(data.description),
        location=_clean(data.location) or "Workshop",
        image_url=_clean(data.image_url),
        status=ItemStatus.INSIDE.value,
    )
    session.add(item)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        conflict("ITEM_CODE_EXISTS", ITEM_CODE_EXISTS_MESSAGE)
    session.refresh(item)

    log_event("item_created", item_id=item.id, code=item.code, by=actor.id)
    return item


def update_item(session: Session, actor: User, item_id: int, data: ItemUpdate) -> Item:
    item = get_item(session, item_id)
    changes = data.model_dump(exclude_unset=True)

    if "name" in changes:
        name = _clean(changes["name"])
        if not name:
            abort(400, "BAD_REQUEST", "Item name is required")
        item.name = name
    if "category" in changes:
        item.category = _clean(changes["category"]) or "General"
    if "location" in changes:
        item.location = _clean(changes["location"]) or "Workshop"
    if "description" in changes:
        item.description = _clean(changes["description"])
    if "image_url" in changes:
        item.image_url = _clean(changes["image_url"])

    now = utcnow()
    item.last_updated = now
    item.updated_at = now
    session.add(item)
    session.commit()
    session.refresh(item)

    log_event("item_updated", item_id=item.id, fields=sorted(changes), by=actor.id)
    return item


def delete_item(session: Session, actor: User, item_id: int) -> None:
    item = get_item(session, item_id)
    code = item.code
    session.delete(item)
    session.commit()
    log_event("item_deleted", item_id=item_id, code=code, by=actor.id)


def dashboard_stats(session: Session) -> DashboardStats:
    total = session.exec(select(func.count()).select_from(Item)).one()
    inside = session.exec(
        select(func.count()).select_from(Item).where(Item.status == ItemStatus.INSIDE.value)
    ).one()
    outside = session.exec(
        select(func.count()).select_from(Item).where(Item.status == ItemStatus.OUTSIDE.value)
    ).one()

    recent = session.exec(
        select(Transaction).order_by(Transaction.timestamp.desc(), Transaction.id.desc()).limit(10)
    ).all()

    category_rows = session.exec(
        select(Item.category, func.count()).group_by(Item.category).order_by(Item.category.asc())
    ).all()

    return DashboardStats(
        total_items=total,
        inside_items=inside,
        outside_items=outside,
        recent_transactions=[TransactionRead.model_validate(t) for t in recent],
        category_stats=[CategoryCount(category=c, count=n) for c, n in category_rows],
    )


def export_items_xlsx(session: Session, search: Optional[str] = None) -> bytes:
    stmt = select(Item).order_by(Item.code.asc())
    conds = _filters(None, None, search)
    if conds:
        stmt = stmt.where(*conds)
    items = session.exec(stmt).all()
    rows = to_read(session, items)

    header = [
        "Code", "Name", "Category", "Status", "Location",
        "Holder", "Checkout Person", "Project", "Last Updated",
    ]

    wb = Workbook()
    ws = wb.active
    ws.title = "Inventory"

    header_font = Font(bold=True)
    header_fill = PatternFill("solid", fgColor="DDDDDD")
    header_align = Alignment(horizontal="center", vertical="center")

    ws.append(header)
    ws.row_dimensions[1].height = 26
    for col in range(1, len(header) + 1):
        cell = ws.cell(row=1, column=col)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_align

    for r in rows:
        ws.append([
            r.code,
            r.name,
            r.category,
            r.status.value,
            r.location,
            r.current_user.name if r.current_user else "",
            r.checkout_person or "",
            r.project_name or "",
            naive_utc(r.last_updated),
        ])

    data_end_row = 1 + len(rows)

    # ✅ 冻结首行
    ws.freeze_panes = "A2"

    for r in range(2, data_end_row + 1):
        ws.cell(row=r, column=9).number_format = "yyyy-mm-dd hh:mm:ss"

    col_widths = {"A": 14, "B": 26, "C": 14, "D": 10, "E": 14, "F": 16, "G": 18, "H": 22, "I": 20}
    for k, w in col_widths.items():
        ws.column_dimensions[k].width = w

    # ✅ Table 样式只覆盖表头+数据；没数据时至少覆盖表头行
    last_row = max(1, data_end_row)
    table = Table(displayName="Inventory", ref=f"A1:I{last_row}")
    table.tableStyleInfo = TableStyleInfo(
        name="TableStyleMedium9",
        showFirstColumn=False,
        showLastColumn=False,
        showRowStripes=True,
        showColumnStripes=False,
    )
    ws.add_table(table)

    # 末尾：导出时间（不在 Table 范围里）
    ws.append([])
    ws.append(["Exported at", datetime.now().strftime("%Y-%m-%d %H:%M:%S")])

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
