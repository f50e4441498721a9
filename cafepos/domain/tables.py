from typing import Iterable, List

from ..core.enums import TableStatus
from ..core.errors import GuardError
from .orders import is_active


def check_move(source, target) -> None:
    """A party can only move to a different table that is free."""
    if source.id == target.id:
        raise GuardError("TABLE_SAME", "Pick a different table")
    if TableStatus(target.status) != TableStatus.available:
        raise GuardError("TABLE_NOT_AVAILABLE", f"Table {target.number} is {TableStatus(target.status).value}")


def orders_on_table(table_id: int, orders: Iterable) -> List:
    """Active, non-archived orders seated on ``table_id``."""
    return [o for o in orders or () if o.table_id == table_id and is_active(o)]
