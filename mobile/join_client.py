from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from shared.log import get_logger

from .errors import JoinRejected, JoinTransportError

logger = get_logger(__name__)

JOIN_PATH = "/api/join-match"


@dataclass(frozen=True)
class JoinGrant:
    auth_token: str
    match_id: Optional[str] = None
    channel_target: Optional[str] = None


def _optional_str(body: dict, key: str) -> Optional[str]:
    value = body.get(key)
    return value if isinstance(value, str) and value else None


class JoinClient:
    """
    One-shot join handshake against the game server.

    POST {server_url}/api/join-match with {planeId, userId, playerName}.
    Returns a JoinGrant or raises JoinRejected / JoinTransportError. No retries;
    the caller decides whether to try again.
    """

    def __init__(
        self,
        server_url: str,
        http: Optional[httpx.AsyncClient] = None,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._http = http
        self._owns_http = http is None
        self.timeout = timeout

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    async def join(self, entity_id: str, client_id: str, display_name: str) -> JoinGrant:
        body = {"planeId": entity_id, "userId": client_id, "playerName": display_name}
        url = f"{self.server_url}{JOIN_PATH}"
        logger.debug("POST %s for %s", url, client_id)

        try:
            response = await self.http.post(url, json=body, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise JoinTransportError(f"{type(e).__name__}: {e}" if str(e) else type(e).__name__) from e

        data = self._decode(response)

        if not response.is_success:
            reason = data.get("error") if isinstance(data, dict) else None
            raise JoinRejected(reason if isinstance(reason, str) and reason else "Join failed", response.status_code)

        if not isinstance(data, dict):
            raise JoinTransportError("Join response is not a JSON object")
        token = data.get("authToken")
        if not isinstance(token, str) or not token:
            raise JoinTransportError("Join response has no authToken")

        return JoinGrant(
            auth_token=token,
            match_id=_optional_str(data, "matchId"),
            channel_target=_optional_str(data, "wsUrl"),
        )

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            if not response.is_success:
                # rejection without a JSON body still counts as a rejection
                return None
            raise JoinTransportError(f"Malformed join response body: {e}") from e

    async def aclose(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
