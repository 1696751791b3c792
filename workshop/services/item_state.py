from dataclasses import dataclass
from typing import Optional, Union

from workshop.models import Item
from workshop.schemas import ItemStatus


@dataclass(frozen=True)
class Inside:
    status = ItemStatus.INSIDE


@dataclass(frozen=True)
class Outside:
    holder_id: int
    checkout_person: str
    project_name: Optional[str] = None

    status = ItemStatus.OUTSIDE


ItemState = Union[Inside, Outside]


def state_of(item: Item) -> ItemState:
    if item.status == ItemStatus.OUTSIDE.value:
        return Outside(
            holder_id=item.current_user_id,
            checkout_person=item.checkout_person or "",
            project_name=item.project_name,
        )
    return Inside()


def state_columns(state: ItemState) -> dict:
    """Column values for ``state``; the only place the four state columns are written."""
    if isinstance(state, Outside):
        return {
            "status": ItemStatus.OUTSIDE.value,
            "current_user_id": state.holder_id,
            "checkout_person": state.checkout_person,
            "project_name": state.project_name,
        }
    return {
        "status": ItemStatus.INSIDE.value,
        "current_user_id": None,
        "checkout_person": None,
        "project_name": None,
    }
