"""
Table occupancy follows the orders sitting on it.

A dine-in order occupies its table on creation. When an order reaches
done or cancel, the table turns dirty unless another active order still
references it; only staff set it back to available. Table updates are a
side effect of an order action: a failure here is reported to the operator
but never undoes the order transition that triggered it.
"""
import logging
from typing import Iterable, List, Optional

from ..core.enums import TableStatus
from ..core.errors import PosError
from ..domain.orders import is_active
from .cache import CachedResource, run_optimistic
from .notify import Notifier
from .resources import TableResource

logger = logging.getLogger(__name__)


def _with_status(table_id: int, status: TableStatus):
    def apply(tables):
        return tuple(t.model_copy(update={"status": status}) if t.id == table_id else t for t in tables)

    return apply


def remaining_orders(closed_order, orders: Iterable) -> List:
    """Active orders other than ``closed_order`` still seated on its table."""
    return [
        o
        for o in orders or ()
        if o.id != closed_order.id and o.table_id == closed_order.table_id and is_active(o)
    ]


class TableStateSynchronizer:
    def __init__(self, tables: TableResource, cache: CachedResource, notifier: Notifier):
        self.tables = tables
        self.cache = cache
        self.notifier = notifier

    async def _set(self, table_id: int, status: TableStatus, request) -> Optional[TableStatus]:
        try:
            await run_optimistic([(self.cache, _with_status(table_id, status))], request, label=f"table {status.value}")
        except PosError as exc:
            logger.warning("table %s -> %s failed: %s", table_id, status.value, exc.code)
            self.notifier.warning(f"Table {table_id} could not be marked {status.value}", code=exc.code)
            return None
        return status

    async def order_opened(self, order) -> Optional[TableStatus]:
        if order.table_id is None:
            return None
        return await self._set(
            order.table_id,
            TableStatus.occupied,
            lambda: self.tables.update_status(order.table_id, TableStatus.occupied),
        )

    async def order_closed(self, closed_order, orders: Iterable) -> Optional[TableStatus]:
        """Call with the order list as revalidated after the transition."""
        if closed_order.table_id is None:
            return None
        others = remaining_orders(closed_order, orders)
        if others:
            logger.debug("table %s still has %d active order(s)", closed_order.table_id, len(others))
            return None
        return await self._set(
            closed_order.table_id,
            TableStatus.dirty,
            lambda: self.tables.update_status(closed_order.table_id, TableStatus.dirty),
        )

    async def mark_clean(self, table_id: int) -> Optional[TableStatus]:
        return await self._set(table_id, TableStatus.available, lambda: self.tables.clean(table_id))
