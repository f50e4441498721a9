from contextlib import contextmanager
from typing import Iterator, Set

from ..core.errors import GuardError


class InFlightOrders:
    """
    Orders with an unresolved mutation.

    The register disables an order's controls while it is held; a second
    action on the same order is refused locally instead of racing the first.
    """

    def __init__(self):
        self._ids: Set[int] = set()

    @property
    def busy_ids(self) -> frozenset:
        return frozenset(self._ids)

    @contextmanager
    def hold(self, *order_ids: int) -> Iterator[None]:
        busy = sorted(i for i in order_ids if i in self._ids)
        if busy:
            raise GuardError("ORDER_BUSY", f"Order {busy[0]} is still being updated")
        self._ids.update(order_ids)
        try:
            yield
        finally:
            self._ids.difference_update(order_ids)
