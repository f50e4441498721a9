import asyncio
import logging
from typing import Any, Optional

import requests

from ..core.config import settings
from ..core.errors import ConflictError, TransportError

logger = logging.getLogger(__name__)


class ApiClient:
    """
    Thin JSON client over a ``requests.Session``.

    Any object with the ``Session.request`` signature works as ``session``;
    the tests pass FastAPI's ``TestClient`` with ``base_url=""``.
    Server rejections (4xx) become ``ConflictError`` carrying the server's
    ``detail`` code; network failures, 5xx and undecodable bodies become
    ``TransportError`` because the outcome is unknown.
    """

    def __init__(self, base_url: Optional[str] = None, session=None, timeout: Optional[float] = None):
        self.base_url = (settings.api_base_url if base_url is None else base_url).rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout or settings.request_timeout

    def request(self, method: str, path: str, *, json=None, params=None, headers=None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(
                method, url, json=json, params=params, headers=headers or {}, timeout=self.timeout
            )
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise TransportError("NETWORK_ERROR", str(exc)) from exc

        if r.status_code >= 500:
            logger.warning("%s %s -> %s", method, path, r.status_code)
            raise TransportError(f"HTTP_{r.status_code}", r.text[:200])
        try:
            data = r.json()
        except ValueError as exc:
            raise TransportError("BAD_RESPONSE", f"{method} {path}: body is not JSON") from exc

        if r.status_code >= 400:
            detail = data.get("detail") if isinstance(data, dict) else None
            code = detail if isinstance(detail, str) else f"HTTP_{r.status_code}"
            logger.info("%s %s rejected: %s", method, path, code)
            raise ConflictError(code, status_code=r.status_code)
        return data

    async def call(self, method: str, path: str, **kwargs) -> Any:
        # blocking I/O runs off the event loop so the register stays responsive
        return await asyncio.to_thread(self.request, method, path, **kwargs)
