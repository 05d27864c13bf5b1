from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional


class MembershipState(str, Enum):
    NOT_JOINED = "Not Joined"
    JOINING = "Joining..."
    JOINED = "Joined Match"
    CHANNEL_LIVE = "Channel Live"
    CHANNEL_AUTHENTICATED = "Authenticated"
    KICKED = "Kicked"
    DISQUALIFIED = "Disqualified"
    MATCH_ENDED = "Match Ended"

    @property
    def is_joined(self) -> bool:
        return self in JOINED_STATES


class ChannelState(str, Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    OPEN = "Open"
    AUTHENTICATED = "Authenticated"
    CLOSED = "Closed"

    @property
    def is_live(self) -> bool:
        return self in LIVE_CHANNEL_STATES


JOINED_STATES = frozenset({
    MembershipState.JOINED,
    MembershipState.CHANNEL_LIVE,
    MembershipState.CHANNEL_AUTHENTICATED,
})

# startJoin is accepted from these; everything else is a no-op
JOINABLE_STATES = frozenset({
    MembershipState.NOT_JOINED,
    MembershipState.KICKED,
    MembershipState.DISQUALIFIED,
    MembershipState.MATCH_ENDED,
})

LIVE_CHANNEL_STATES = frozenset({
    ChannelState.CONNECTING,
    ChannelState.OPEN,
    ChannelState.AUTHENTICATED,
})


@dataclass(frozen=True)
class MatchContext:
    match_id: Optional[str] = None
    channel_target: Optional[str] = None


@dataclass(frozen=True)
class Session:
    """One simulated mobile. Transitions return new records, see mobile.transitions."""
    client_id: str
    entity_id: str
    display_name: str
    auth_token: Optional[str] = None
    match_context: Optional[MatchContext] = None
    membership: MembershipState = MembershipState.NOT_JOINED
    channel: ChannelState = ChannelState.DISCONNECTED
    last_reason: Optional[str] = None
    last_error: Optional[str] = None
    last_match_update: Optional[Dict[str, Any]] = None

    @property
    def is_joined(self) -> bool:
        return self.membership.is_joined

    @property
    def has_credential(self) -> bool:
        return self.auth_token is not None and self.match_context is not None

    def to_dict(self) -> Dict[str, Any]:
        ctx = self.match_context
        return {
            "userId": self.client_id,
            "planeId": self.entity_id,
            "playerName": self.display_name,
            "authToken": self.auth_token,
            "matchId": ctx.match_id if ctx else None,
            "wsUrl": ctx.channel_target if ctx else None,
            "status": self.membership.value,
            "channel": self.channel.value,
            "reason": self.last_reason,
            "error": self.last_error,
        }


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ActivityEntry:
    source_label: str
    message: str
    severity: Severity = Severity.INFO
    timestamp: datetime = field(default_factory=datetime.now)


class ActivityLog:
    """Most recent entries first; once full, the oldest entry is dropped."""

    def __init__(self, capacity: int = 20) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: Deque[ActivityEntry] = deque(maxlen=capacity)

    def add(self, source_label: str, message: str, severity: Severity = Severity.INFO) -> ActivityEntry:
        entry = ActivityEntry(source_label, message, severity)
        self._entries.appendleft(entry)
        return entry

    def entries(self) -> List[ActivityEntry]:
        return list(self._entries)

    def for_source(self, source_label: str) -> List[ActivityEntry]:
        return [e for e in self._entries if e.source_label == source_label]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
