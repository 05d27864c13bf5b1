from __future__ import annotations
import asyncio
from typing import Dict, Iterator, List, Optional

import httpx

from shared.envelope import InboundEvent
from shared.log import get_logger

from .config import SimulatorConfig
from .debug_client import DebugClient
from .join_client import JoinClient
from .session import MatchSession
from .state import ActivityLog, Session
from .ws_client import Connector

logger = get_logger(__name__)


class SessionRegistry:
    """
    The fixed, ordered set of simulated mobiles.

    Sessions never see each other. Broadcast events (plane:poweron) received
    by any session are handed back here and applied to every session in
    registration order.
    """

    def __init__(self, activity: Optional[ActivityLog] = None) -> None:
        self.activity = activity if activity is not None else ActivityLog()
        self._sessions: List[MatchSession] = []
        self._by_client: Dict[str, MatchSession] = {}
        self._http: Optional[httpx.AsyncClient] = None
        self.debug: Optional[DebugClient] = None

    @classmethod
    def from_config(
        cls,
        config: SimulatorConfig,
        *,
        http: Optional[httpx.AsyncClient] = None,
        connector: Optional[Connector] = None,
    ) -> "SessionRegistry":
        registry = cls(ActivityLog(config.log_capacity))
        if http is None:
            http = httpx.AsyncClient(timeout=config.join_timeout)
            registry._http = http
        join_client = JoinClient(config.server_url, http, timeout=config.join_timeout)
        registry.debug = DebugClient(config.server_url, http, timeout=config.join_timeout)
        for slot in config.slots:
            registry.register(MatchSession(
                slot.client_id,
                slot.entity_id,
                slot.display_name,
                join_client,
                label=slot.label,
                activity=registry.activity,
                connector=connector,
                open_timeout=config.open_timeout,
                ping_interval=config.ping_interval,
                ping_timeout=config.ping_timeout,
            ))
        return registry

    def register(self, session: MatchSession) -> MatchSession:
        if session.client_id in self._by_client:
            raise ValueError(f"client {session.client_id} already registered")
        session.broadcast = self.dispatch_broadcast
        self._sessions.append(session)
        self._by_client[session.client_id] = session
        return session

    def dispatch_broadcast(self, event: InboundEvent) -> List[Session]:
        logger.debug(f"broadcasting {event.tag} for plane {event.plane_id} to {len(self._sessions)} sessions")
        return [session.apply_broadcast(event) for session in self._sessions]

    def __iter__(self) -> Iterator[MatchSession]:
        return iter(list(self._sessions))

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, client_id: str) -> Optional[MatchSession]:
        return self._by_client.get(client_id)

    def by_slot(self, slot: int) -> MatchSession:
        """1-based, matching the slot labels."""
        if not 1 <= slot <= len(self._sessions):
            raise IndexError(f"no slot {slot}; have 1..{len(self._sessions)}")
        return self._sessions[slot - 1]

    def snapshot(self) -> List[Session]:
        return [session.record for session in self._sessions]

    async def start_join_all(self) -> List[bool]:
        return list(await asyncio.gather(*(session.start_join() for session in self._sessions)))

    async def aclose(self) -> None:
        for session in self._sessions:
            await session.aclose()
        if self._http is not None:
            await self._http.aclose()
            self._http = None
