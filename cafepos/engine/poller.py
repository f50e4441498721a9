import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..core.config import settings
from ..core.errors import PosError

logger = logging.getLogger(__name__)


class Revalidator:
    """Periodic background refresh; an interval of 0 disables polling."""

    def __init__(self, refresh: Callable[[], Awaitable], interval: Optional[float] = None):
        self._refresh = refresh
        self.interval = settings.poll_interval_seconds if interval is None else interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.interval <= 0:
            logger.info("background revalidation disabled")
            return
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._refresh()
            except PosError as exc:
                logger.warning("background revalidation failed: %s", exc.code)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, *exc):
        await self.stop()
