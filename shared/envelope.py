from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import json

from shared.message_types import DEFAULT_REASON, ENTITY_EVENTS, EventTag, OutboundTag


class MalformedMessage(Exception):
    """Raised when an inbound channel frame cannot be decoded."""

    def __init__(self, detail: str, raw: Any = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.raw = raw


class ProtocolWarning(Warning):
    """Inbound frame carries a tag outside the known set. Informational only."""

    def __init__(self, tag: str) -> None:
        super().__init__(f"Unknown event tag: {tag}")
        self.tag = tag


@dataclass(frozen=True)
class InboundEvent:
    """
    A tagged message received over the match channel:
    {
    "tag":  "STRING",
    ...     tag-specific payload fields
    }

    Entity events carry their target plane under data:
    {"tag": "plane:kicked", "data": {"planeId": "sim-plane-001", "reason": "collision"}}

    The payload is the frame minus its tag and may be empty.
    """
    tag: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, raw: str | bytes) -> 'InboundEvent':
        """Parse a raw frame into an InboundEvent, validating structure"""
        if isinstance(raw, bytes):
            try:
                raw = raw.decode('utf-8')
            except UnicodeDecodeError as e:
                raise MalformedMessage(f"Frame is not UTF-8: {e}", raw)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedMessage(f"Invalid JSON: {e}", raw)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> 'InboundEvent':
        """Create InboundEvent from a decoded frame, validating required fields"""
        if not isinstance(data, dict):
            raise MalformedMessage("Frame must be a JSON object", data)

        tag = data.get('tag')
        if not isinstance(tag, str) or not tag:
            raise MalformedMessage("'tag' must be a non-empty string", data)

        payload = {k: v for k, v in data.items() if k != 'tag'}

        # Entity events are useless without the plane they concern
        known = EventTag.lookup(tag)
        if known in ENTITY_EVENTS:
            inner = payload.get('data')
            if not isinstance(inner, dict):
                raise MalformedMessage(f"'{tag}' requires a 'data' object", data)
            if not isinstance(inner.get('planeId'), str):
                raise MalformedMessage(f"'{tag}' requires data.planeId", data)
            reason = inner.get('reason')
            if reason is not None and not isinstance(reason, str):
                raise MalformedMessage(f"'{tag}' data.reason must be a string", data)

        return cls(tag=tag, payload=payload)

    @property
    def known_tag(self) -> Optional[EventTag]:
        return EventTag.lookup(self.tag)

    @property
    def data(self) -> Dict[str, Any]:
        inner = self.payload.get('data')
        return inner if isinstance(inner, dict) else {}

    @property
    def plane_id(self) -> Optional[str]:
        return self.data.get('planeId')

    @property
    def reason(self) -> str:
        return self.data.get('reason') or DEFAULT_REASON

    def to_dict(self) -> Dict[str, Any]:
        """Convert InboundEvent back to its wire dictionary"""
        return {'tag': self.tag, **self.payload}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(',', ':'), sort_keys=True)


def create_hello(match_id: Optional[str], client_id: str, auth_token: str) -> Dict[str, Any]:
    """Build the handshake sent once, right after the channel opens."""
    return {
        'tag': OutboundTag.HELLO.value,
        'role': 'client',
        'matchId': match_id,
        'clientId': client_id,
        'authToken': auth_token,
    }


def encode_message(message: Dict[str, Any]) -> str:
    """Serialize an outbound message as compact JSON"""
    return json.dumps(message, separators=(',', ':'), sort_keys=True)
