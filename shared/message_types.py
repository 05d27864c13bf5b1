from __future__ import annotations

from enum import Enum
from typing import Optional, Set


class EventTag(str, Enum):
    """Aeroduel channel message tags (server -> mobile)."""

    # Channel control
    SYSTEM_ACK = "system:ack"                    # Handshake accepted

    # Match lifecycle
    MATCH_UPDATE = "match:update"                # Periodic match snapshot
    MATCH_CREATED = "match:created"              # New lobby supersedes current match
    MATCH_END = "match:end"                      # Match finished

    # Entity (plane) events, correlated by planeId
    PLANE_HIT = "plane:hit"
    PLANE_KICKED = "plane:kicked"
    PLANE_DISQUALIFIED = "plane:disqualified"
    PLANE_POWERON = "plane:poweron"

    @classmethod
    def from_string(cls, value: str) -> EventTag:
        """Convert string to EventTag enum, raise ValueError if unknown."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown event tag: {value}")

    @classmethod
    def lookup(cls, value: str) -> Optional[EventTag]:
        """Return the EventTag for value, or None for tags outside the known set."""
        try:
            return cls(value)
        except ValueError:
            return None

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if string is a known event tag."""
        return cls.lookup(value) is not None


class OutboundTag(str, Enum):
    """Mobile -> server message tags."""
    HELLO = "hello"


# Tags whose payload must carry data.planeId; plane:hit payloads are free-form
ENTITY_EVENTS: Set[EventTag] = {
    EventTag.PLANE_KICKED,
    EventTag.PLANE_DISQUALIFIED,
    EventTag.PLANE_POWERON,
}

# Tags that remove a plane from the match when addressed to it
REMOVAL_EVENTS: Set[EventTag] = {
    EventTag.PLANE_KICKED,
    EventTag.PLANE_DISQUALIFIED,
}

# Tags re-dispatched by the registry to every session
BROADCAST_EVENTS: Set[EventTag] = {
    EventTag.PLANE_POWERON,
}

# Reason recorded when a kick/disqualify payload carries none
DEFAULT_REASON = "No reason provided"
