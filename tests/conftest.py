import asyncio
import json
import os
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

import httpx
import pytest
import websockets

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("AEROSIM_LOG_DIR", str(Path(tempfile.gettempdir()) / "aerosim-test-logs"))

from mobile.join_client import JoinClient
from mobile.session import MatchSession
from mobile.state import ChannelState, MatchContext, MembershipState, Session

SERVER_URL = "http://aeroduel.test:45045"

_CLOSE = object()


class DummyWebSocket:
    def __init__(self) -> None:
        self.sent_messages: list[str] = []
        self.closed = False
        self.close_code: int | None = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise websockets.exceptions.ConnectionClosedOK(None, None)
        self.sent_messages.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        if not self.closed:
            self.closed = True
            self.close_code = code
            self._inbox.put_nowait(_CLOSE)

    def push(self, frame) -> None:
        """Queue an inbound frame; dicts are JSON-encoded."""
        self._inbox.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def server_close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(_CLOSE)

    @property
    def sent_json(self) -> list[dict]:
        return [json.loads(m) for m in self.sent_messages]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item


class DummyConnector:
    """Stands in for websockets.connect."""

    def __init__(self) -> None:
        self.sockets: list[DummyWebSocket] = []
        self.targets: list[str] = []
        self.kwargs: dict = {}
        self.fail: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def __call__(self, target: str, **kwargs) -> DummyWebSocket:
        self.targets.append(target)
        self.kwargs = kwargs
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            raise self.fail
        ws = DummyWebSocket()
        self.sockets.append(ws)
        return ws

    @property
    def last(self) -> DummyWebSocket:
        return self.sockets[-1]


class JoinServer:
    """httpx.MockTransport handler playing the game server's HTTP API."""

    def __init__(self, status: int = 200, body=None) -> None:
        self.status = status
        self.body = body if body is not None else {"authToken": "tok123456789", "matchId": "m1", "wsUrl": "ws://x"}
        self.requests: list[httpx.Request] = []
        self.gate: asyncio.Event | None = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.body, Exception):
            raise self.body
        if isinstance(self.body, (bytes, str)):
            return httpx.Response(self.status, content=self.body)
        return httpx.Response(self.status, json=self.body)

    @property
    def join_bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def make_session(
    server: JoinServer,
    connector: DummyConnector,
    client_id: str = "sim-user-001",
    entity_id: str = "plane-001",
    display_name: str = "Foxtrot-4",
    **kwargs,
) -> MatchSession:
    join_client = JoinClient(SERVER_URL, server.client())
    return MatchSession(client_id, entity_id, display_name, join_client, connector=connector, **kwargs)


async def settle(rounds: int = 20) -> None:
    """Let queued callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


_CREDS = {"auth_token": "tok123", "match_context": MatchContext("m1", "ws://x")}


def session_in(membership: MembershipState, entity_id: str = "plane-001") -> Session:
    """A consistent record sitting in the given membership state."""
    base = Session(client_id="sim-user-001", entity_id=entity_id, display_name="Foxtrot-4")
    records = {
        MembershipState.NOT_JOINED: base,
        MembershipState.JOINING: replace(base, membership=MembershipState.JOINING),
        MembershipState.JOINED: replace(base, membership=MembershipState.JOINED, channel=ChannelState.CONNECTING, **_CREDS),
        MembershipState.CHANNEL_LIVE: replace(base, membership=MembershipState.CHANNEL_LIVE, channel=ChannelState.OPEN, **_CREDS),
        MembershipState.CHANNEL_AUTHENTICATED: replace(
            base, membership=MembershipState.CHANNEL_AUTHENTICATED, channel=ChannelState.AUTHENTICATED, **_CREDS
        ),
        MembershipState.KICKED: replace(base, membership=MembershipState.KICKED, channel=ChannelState.CLOSED, last_reason="collision"),
        MembershipState.DISQUALIFIED: replace(base, membership=MembershipState.DISQUALIFIED, channel=ChannelState.CLOSED, last_reason="cheating"),
        MembershipState.MATCH_ENDED: replace(base, membership=MembershipState.MATCH_ENDED, channel=ChannelState.CLOSED, **_CREDS),
    }
    return records[membership]


ALL_STATES = list(MembershipState)
JOINED_VARIANTS = [MembershipState.JOINED, MembershipState.CHANNEL_LIVE, MembershipState.CHANNEL_AUTHENTICATED]


@pytest.fixture
def join_server() -> JoinServer:
    return JoinServer()


@pytest.fixture
def connector() -> DummyConnector:
    return DummyConnector()
