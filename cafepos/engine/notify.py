import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..core.clock import utcnow

logger = logging.getLogger(__name__)

SUCCESS = "success"
INFO = "info"
WARNING = "warning"
ERROR = "error"


@dataclass(frozen=True)
class Notification:
    level: str
    message: str
    code: Optional[str] = None
    at: datetime = field(default_factory=utcnow)


class Notifier:
    """Operator-facing toasts; the last few are kept for the UI to render."""

    def __init__(self, sink: Optional[Callable[[Notification], None]] = None, keep: int = 50):
        self._sink = sink
        self.history = deque(maxlen=keep)

    def emit(self, level: str, message: str, code: Optional[str] = None) -> Notification:
        n = Notification(level=level, message=message, code=code)
        self.history.append(n)
        logger.log(logging.WARNING if level in (WARNING, ERROR) else logging.INFO, "[%s] %s", level, message)
        if self._sink is not None:
            self._sink(n)
        return n

    def success(self, message: str) -> Notification:
        return self.emit(SUCCESS, message)

    def info(self, message: str) -> Notification:
        return self.emit(INFO, message)

    def warning(self, message: str, code: Optional[str] = None) -> Notification:
        return self.emit(WARNING, message, code)

    def error(self, message: str, code: Optional[str] = None) -> Notification:
        return self.emit(ERROR, message, code)

    @property
    def last(self) -> Optional[Notification]:
        return self.history[-1] if self.history else None

