"""
Optimistic cache layer.

A ``CachedResource`` mirrors one server resource (order list, shift
balance, table board). It keeps the last authoritative value (the base)
and a stack of optimistic layers, one per mutation still waiting to be
reconciled. The displayed value is the base with every layer applied in
the order the operator issued the mutations.

Protocol for a mutation (``run_optimistic``):

1. snapshot the displayed value and push a layer (pure ``value -> value``);
2. issue the authoritative request;
3. success: mark the layer confirmed and revalidate;
4. failure: drop the layer and re-raise.

A revalidation never runs while a layer is still in flight: it is deferred
until the resource settles. A fetch that was already on the wire when a
new layer was pushed is discarded on arrival, so a stale response cannot
clobber a newer optimistic value. Once a fetch lands, every confirmed layer
is dropped because the server value already contains its effect.
"""
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from ..core.errors import ConflictError, PosError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class _Layer:
    token: int
    label: str
    apply: Callable[[Any], Any]
    snapshot: Any
    confirmed: bool = False


class CachedResource(Generic[T]):
    def __init__(self, key: str, fetcher: Callable[[], Awaitable[T]]):
        self.key = key
        self._fetcher = fetcher
        self._base: Optional[T] = None
        self._value: Optional[T] = None
        self._layers: List[_Layer] = []
        self._listeners: List[Callable[[Optional[T]], None]] = []
        self._tokens = itertools.count(1)
        self._generation = 0
        self._fetch_seq = 0
        self._deferred = False
        self.loaded = False

    # ---------- reads ----------
    @property
    def value(self) -> Optional[T]:
        return self._value

    @property
    def inflight(self) -> int:
        return sum(1 for l in self._layers if not l.confirmed)

    @property
    def revalidation_pending(self) -> bool:
        return self._deferred

    def subscribe(self, listener: Callable[[Optional[T]], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _recompute(self) -> None:
        value = self._base
        for layer in self._layers:
            if value is not None:
                value = layer.apply(value)
        if self.loaded and value == self._value:
            # same value redrawn; listeners are not bothered
            self._value = value
            return
        self._value = value
        for listener in list(self._listeners):
            listener(value)

    # ---------- optimistic layers ----------
    def begin(self, apply: Callable[[T], T], label: str = "") -> int:
        token = next(self._tokens)
        self._generation += 1
        self._layers.append(_Layer(token, label, apply, snapshot=self._value))
        logger.debug("%s: optimistic %s (#%s)", self.key, label, token)
        self._recompute()
        return token

    def _layer(self, token: int) -> _Layer:
        for layer in self._layers:
            if layer.token == token:
                return layer
        raise KeyError(token)

    def confirm(self, token: int) -> None:
        self._layer(token).confirmed = True

    def rollback(self, token: int) -> Any:
        layer = self._layer(token)
        self._layers.remove(layer)
        logger.debug("%s: rollback %s (#%s)", self.key, layer.label, token)
        self._recompute()
        return layer.snapshot

    # ---------- revalidation ----------
    async def revalidate(self) -> Optional[T]:
        if self.inflight:
            self._deferred = True
            logger.debug("%s: revalidation deferred, %d in flight", self.key, self.inflight)
            return self._value

        self._fetch_seq += 1
        seq = self._fetch_seq
        generation = self._generation
        value = await self._fetcher()

        if generation != self._generation:
            # a mutation began while this fetch was on the wire
            self._deferred = True
            logger.debug("%s: stale fetch discarded", self.key)
            return self._value
        if seq != self._fetch_seq:
            logger.debug("%s: superseded fetch discarded", self.key)
            return self._value

        self._base = value
        self._layers = [l for l in self._layers if not l.confirmed]
        self._deferred = False
        self.loaded = True
        self._recompute()
        return self._value

    async def settle(self) -> None:
        """Run a deferred revalidation once nothing is in flight."""
        if self._deferred and not self.inflight:
            await self.revalidate()


async def _refresh_quietly(resource: CachedResource) -> None:
    try:
        await resource.revalidate()
    except PosError as exc:
        # the mutation itself succeeded; the next revalidation cycle catches up
        resource._deferred = True
        logger.warning("%s: revalidation failed (%s)", resource.key, exc.code)


async def run_optimistic(
    updates: Sequence[Tuple[CachedResource, Callable[[Any], Any]]],
    request: Callable[[], Awaitable[R]],
    label: str = "",
) -> R:
    """Apply ``updates`` locally, issue ``request``, then reconcile or roll back."""
    tokens = [(res, res.begin(fn, label)) for res, fn in updates]
    try:
        result = await request()
    except Exception as exc:
        for res, token in reversed(tokens):
            res.rollback(token)
        stale = isinstance(exc, ConflictError)
        for res, _ in tokens:
            if not res.inflight and (stale or res.revalidation_pending):
                await _refresh_quietly(res)
        raise

    for res, token in tokens:
        res.confirm(token)
    for res, _ in tokens:
        await _refresh_quietly(res)
    return result
