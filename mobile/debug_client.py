from __future__ import annotations
from typing import Any, Optional

import httpx

from shared.log import get_logger

from .errors import DebugQueryError

logger = get_logger(__name__)

MATCH_PATH = "/api/match"
PLANES_PATH = "/api/planes"


class DebugClient:
    """Read-only server snapshots. Results are returned exactly as decoded."""

    def __init__(self, server_url: str, http: Optional[httpx.AsyncClient] = None, *, timeout: Optional[float] = None) -> None:
        self.server_url = server_url.rstrip("/")
        self._http = http
        self._owns_http = http is None
        self.timeout = timeout

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    async def fetch_match_state(self) -> Any:
        return await self._get(MATCH_PATH)

    async def fetch_planes(self) -> Any:
        return await self._get(PLANES_PATH)

    async def _get(self, path: str) -> Any:
        url = f"{self.server_url}{path}"
        try:
            response = await self.http.get(url, timeout=self.timeout)
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"GET {url} failed: {e}")
            raise DebugQueryError(str(e) or type(e).__name__) from e

    async def aclose(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
